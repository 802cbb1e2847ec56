"""Application modules.

- auth: JWT bearer tokens and the cron shared secret
- groups: users, family groups, memberships and channel preferences
- announcement: announcements and their send policy
- event: events and event reminders
- dispatch: fan-out, delivery ledger, transports and scheduled claims
- ratelimit: sliding-window rate limiting
"""
