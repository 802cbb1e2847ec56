"""FamilyNotify Dispatch backend.

Delivers family-group announcements and event reminders to every member
through each channel they have enabled and verified.

Modules:
    - core: Configuration, database, Redis, Celery, logging, metrics, tracing
    - modules.auth: Bearer token validation and cron secret checks
    - modules.groups: Family groups, memberships and channel preferences
    - modules.announcement: Announcement creation and scheduling policy
    - modules.event: Events and event reminders
    - modules.dispatch: Fan-out, delivery ledger, transports and scheduler
    - modules.ratelimit: Sliding-window request rate limiting
"""

__version__ = "0.1.0"
