import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

ROLE_CHOICES = [
    ("CUSTOMER", "Customer"),
    ("PROPERTY_OWNER", "Property Owner"),
    ("VEHICLE_OWNER", "Vehicle Owner"),
    ("TOUR_GUIDE", "Tour Guide"),
    ("SUPER_ADMIN", "Super Admin"),
]


def timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def primary_key():
    return (
        "id",
        models.BigAutoField(
            auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
        ),
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Conversation",
            fields=[
                primary_key(),
                *timestamps(),
                (
                    "conversation_type",
                    models.CharField(
                        choices=[
                            ("CUSTOMER_PROVIDER", "Customer / Provider"),
                            ("PROVIDER_ADMIN", "Provider / Admin"),
                            ("CUSTOMER_ADMIN", "Customer / Admin"),
                            ("SUPPORT", "Support"),
                            ("GROUP", "Group"),
                        ],
                        db_index=True,
                        help_text="Classification of the conversation",
                        max_length=20,
                    ),
                ),
                (
                    "participant_key",
                    models.CharField(
                        db_index=True,
                        help_text="Sorted participant ids joined by commas",
                        max_length=255,
                    ),
                ),
                (
                    "subject",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Optional subject line",
                        max_length=255,
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="False once the conversation is archived",
                    ),
                ),
                (
                    "message_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of accepted messages"
                    ),
                ),
                (
                    "last_sequence",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Highest sequence handed out; never decreases",
                    ),
                ),
                (
                    "last_message_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Timestamp of the most recent accepted message",
                        null=True,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who opened the conversation",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_conversations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_conversation",
                "ordering": ["-last_message_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                primary_key(),
                *timestamps(),
                (
                    "sender_role",
                    models.CharField(
                        blank=True,
                        choices=ROLE_CHOICES,
                        default="",
                        help_text="Role the sender wrote in",
                        max_length=20,
                    ),
                ),
                (
                    "message_type",
                    models.CharField(
                        choices=[
                            ("TEXT", "Text"),
                            ("REPLY", "Reply"),
                            ("SYSTEM", "System"),
                        ],
                        db_index=True,
                        default="TEXT",
                        help_text="Type of message",
                        max_length=10,
                    ),
                ),
                (
                    "content",
                    models.TextField(blank=True, default="", help_text="Message text"),
                ),
                (
                    "attachments",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Ordered list of attachment references",
                    ),
                ),
                (
                    "sequence",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Position of this message in its conversation",
                    ),
                ),
                (
                    "is_read",
                    models.BooleanField(
                        default=False,
                        help_text="Whether any non-sender participant has read this message",
                    ),
                ),
                (
                    "is_flagged",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether the message awaits moderator review",
                    ),
                ),
                (
                    "flag_reason",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("flagged_at", models.DateTimeField(blank=True, null=True)),
                (
                    "moderation_status",
                    models.CharField(
                        choices=[
                            ("NONE", "Not reviewed"),
                            ("APPROVED", "Approved"),
                            ("REMOVED", "Removed"),
                        ],
                        default="NONE",
                        help_text="Outcome of moderator review",
                        max_length=10,
                    ),
                ),
                ("moderated_at", models.DateTimeField(blank=True, null=True)),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Client token deduplicating retried sends",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "conversation",
                    models.ForeignKey(
                        help_text="Conversation this message belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="messages",
                        to="chat.conversation",
                    ),
                ),
                (
                    "flagged_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who flagged the message (null when auto-flagged)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="flagged_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "moderated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="moderated_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "reply_to",
                    models.ForeignKey(
                        blank=True,
                        help_text="Message this one replies to (same conversation)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="replies",
                        to="chat.message",
                    ),
                ),
                (
                    "sender",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who sent this message (null for system messages)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sent_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_message",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["conversation", "created_at", "id"],
                        name="chat_msg_conv_cursor_idx",
                    ),
                    models.Index(
                        fields=["sender", "-created_at"],
                        name="chat_msg_sender_idx",
                    ),
                    models.Index(
                        condition=models.Q(("is_flagged", True)),
                        fields=["is_flagged", "created_at"],
                        name="chat_msg_flagged_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key__isnull", False)),
                        fields=("sender", "idempotency_key"),
                        name="chat_msg_unique_idempotency_key",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="conversation",
            name="last_message",
            field=models.ForeignKey(
                blank=True,
                help_text="Most recent accepted message",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="chat.message",
            ),
        ),
        migrations.AddIndex(
            model_name="conversation",
            index=models.Index(
                fields=["-last_message_at", "-id"], name="chat_conv_inbox_idx"
            ),
        ),
        migrations.AddConstraint(
            model_name="conversation",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_active", True)),
                fields=("participant_key", "conversation_type"),
                name="chat_unique_active_participant_set",
            ),
        ),
        migrations.CreateModel(
            name="Participant",
            fields=[
                primary_key(),
                *timestamps(),
                (
                    "role",
                    models.CharField(
                        choices=ROLE_CHOICES,
                        help_text="Role the user acts in within this conversation",
                        max_length=20,
                    ),
                ),
                (
                    "unread_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Unread messages from other participants"
                    ),
                ),
                (
                    "last_read_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the user last read this conversation",
                        null=True,
                    ),
                ),
                (
                    "hidden_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the user hid this conversation from their inbox",
                        null=True,
                    ),
                ),
                (
                    "conversation",
                    models.ForeignKey(
                        help_text="Conversation the user participates in",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="participants",
                        to="chat.conversation",
                    ),
                ),
                (
                    "last_read_message",
                    models.ForeignKey(
                        blank=True,
                        help_text="Newest message the user has read",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="chat.message",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="Participating user",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="chat_participations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_participant",
                "ordering": ["id"],
                "indexes": [
                    models.Index(
                        fields=["user", "hidden_at"],
                        name="chat_part_user_inbox_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("conversation", "user"),
                        name="chat_unique_participant",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="MessageReadReceipt",
            fields=[
                primary_key(),
                (
                    "read_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "message",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="read_receipts",
                        to="chat.message",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="message_receipts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_message_read_receipt",
                "ordering": ["read_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("message", "user"),
                        name="chat_unique_read_receipt",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="UserBlock",
            fields=[
                primary_key(),
                *timestamps(),
                (
                    "reason",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "blocked_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("unblocked_at", models.DateTimeField(blank=True, null=True)),
                (
                    "blocked_user",
                    models.ForeignKey(
                        help_text="User who is blocked",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="blocks_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "blocker",
                    models.ForeignKey(
                        help_text="User who created the block",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="blocks_made",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_user_block",
                "ordering": ["-blocked_at", "-id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("blocker", "blocked_user"),
                        name="chat_unique_active_block",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("blocker", models.F("blocked_user")), _negated=True
                        ),
                        name="chat_block_not_self",
                    ),
                ],
            },
        ),
    ]
