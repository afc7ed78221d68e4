"""
Notifications app: the durable side-channel for users who are not live.

This app provides:
- Notification model (MESSAGE, REVIEW, BOOKING, SYSTEM)
- NotificationService for creation and read-state changes
- A Celery task pruning old read notifications
- REST API for listing and acknowledging notifications

Usage:
    from notifications.services import NotificationService

    notification = NotificationService.create(
        recipient=user,
        notification_type=NotificationKind.MESSAGE,
        title="New message from Jane",
        message="Is this available?",
        data={"conversation_id": 12, "message_id": 345, "sender_id": 7},
        actor=sender,
    )
"""
