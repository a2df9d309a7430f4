# app/core/dispatch/__init__.py
"""
Job dispatch core.

- ``domain``     entities and enums (Job, Subcontractor, Profile, Actor)
- ``lifecycle``  job id generation, profit, field updates, completion rule
- ``access``     role checks
- ``messages``   assignment/update texts and admin change summaries
- ``deeplinks``  WhatsApp links per client platform
- ``dashboard``  filtering, business-week ranges, stats, CSV export
- ``services``   message preparation and admin notifications
- ``use_cases``  JobDispatchService, the orchestration point for transports

Nothing here imports ``app.transport``.
"""
