"""
Entity type definitions for the local learning store.

Declaration order is also DDL order: parents come before the relations
that reference them (decks before cards, cards before learning_logs,
study_goals before milestones).
"""

from __future__ import annotations

import threading
from typing import Optional

from .registry import STORE_VERSION, SchemaRegistry
from .types import EntityTypeDef, ParentRef, field

_registry: Optional[SchemaRegistry] = None
_registry_lock = threading.Lock()


def _timestamps() -> tuple:
    return (
        field("created_at", "timestamp", required=True),
        field("updated_at", "timestamp", required=True),
    )


Note = EntityTypeDef(
    name="Note",
    table="notes",
    owner_field="owner_id",
    fields=(
        field("owner_id", "str", required=True),
        field("slug", "str", required=True),
        field("title", "str", required=True),
        field("description", "str"),
        field(
            "visibility",
            "enum",
            required=True,
            enum_values=("public", "unlisted", "invite", "private"),
            default="private",
        ),
        *_timestamps(),
        field("is_trashed", "bool", required=True, default=False),
        field("trashed_at", "timestamp"),
    ),
    unique_together=(("owner_id", "slug"),),
    description="A user's note; groups pages",
)

Page = EntityTypeDef(
    name="Page",
    table="pages",
    owner_field="user_id",
    fields=(
        field("user_id", "str", required=True),
        # Plain reference: pages may outlive or precede their note locally.
        field("note_id", "str", indexed=True),
        field("title", "str", required=True),
        field("thumbnail_url", "str"),
        field("is_public", "bool", required=True, default=False),
        field("scrapbox_page_id", "str"),
        field("scrapbox_page_list_synced_at", "timestamp"),
        field("scrapbox_page_content_synced_at", "timestamp"),
        *_timestamps(),
    ),
    description="Page metadata; content is synced elsewhere",
)

Deck = EntityTypeDef(
    name="Deck",
    table="decks",
    owner_field="user_id",
    fields=(
        field("user_id", "str", required=True),
        field("title", "str", required=True),
        field("description", "str"),
        field("is_public", "bool", required=True, default=False),
        *_timestamps(),
    ),
)

Card = EntityTypeDef(
    name="Card",
    table="cards",
    owner_field="user_id",
    parent=ParentRef(field="deck_id", table="decks"),
    fields=(
        field("deck_id", "str", required=True),
        field("user_id", "str", required=True),
        field("front_content", "str", required=True),
        field("back_content", "str", required=True),
        field("source_audio_url", "str"),
        field("source_ocr_image_url", "str"),
        *_timestamps(),
        field("ease_factor", "float", required=True, default=2.5),
        field("repetition_count", "int", required=True, default=0),
        field("review_interval", "int", required=True, default=0),
        field("next_review_at", "timestamp", indexed=True),
        field("stability", "float", required=True, default=0.0),
        field("difficulty", "float", required=True, default=1.0),
        field("last_reviewed_at", "timestamp"),
    ),
    description="Study card with its scheduling state",
)

StudyGoal = EntityTypeDef(
    name="StudyGoal",
    table="study_goals",
    owner_field="user_id",
    fields=(
        field("user_id", "str", required=True),
        field("title", "str", required=True),
        field("description", "str"),
        *_timestamps(),
        field("deadline", "timestamp"),
        field("progress_rate", "int", required=True, default=0, min_value=0, max_value=100),
        field(
            "status",
            "enum",
            required=True,
            enum_values=("not_started", "in_progress", "completed"),
            default="not_started",
            indexed=True,
        ),
        field("completed_at", "timestamp"),
    ),
)

LearningLog = EntityTypeDef(
    name="LearningLog",
    table="learning_logs",
    owner_field="user_id",
    parent=ParentRef(field="card_id", table="cards"),
    fields=(
        field("user_id", "str", required=True),
        field("card_id", "str", required=True),
        field("question_id", "str"),
        field("answered_at", "timestamp", required=True, indexed=True),
        field("is_correct", "bool", required=True),
        field("user_answer", "str"),
        field(
            "practice_mode",
            "enum",
            required=True,
            enum_values=("flashcard", "quiz", "typing", "listening", "reading"),
        ),
        field("review_interval", "int"),
        field("next_review_at", "timestamp"),
        field("quality", "int", required=True, default=0, min_value=0, max_value=5),
        field("response_time", "int", required=True, default=0),
        field("effort_time", "int", required=True, default=0),
        field("attempt_count", "int", required=True, default=1),
    ),
    # Logs are append-only records without an updated_at column.
    touch_field=None,
    remote_timestamp_field="answered_at",
    description="One answer given while studying a card",
)

Milestone = EntityTypeDef(
    name="Milestone",
    table="milestones",
    parent=ParentRef(field="goal_id", table="study_goals"),
    fields=(
        field("goal_id", "str", required=True),
        field("title", "str", required=True),
        field("description", "str"),
        field("due_date", "timestamp"),
        field("is_completed", "bool", required=True, default=False),
        *_timestamps(),
    ),
    description="Checkpoint of a study goal; owned through the goal",
)

UserSettings = EntityTypeDef(
    name="UserSettings",
    table="user_settings",
    owner_field="user_id",
    fields=(
        field("user_id", "str", required=True, unique=True),
        field(
            "theme",
            "enum",
            required=True,
            enum_values=("ocean", "forest", "sunset", "night-sky", "desert"),
            default="ocean",
        ),
        field("mode", "enum", required=True, enum_values=("light", "dark"), default="light"),
        field("locale", "str", required=True, default="en"),
        field("timezone", "str", required=True, default="UTC"),
        field("notifications", "json", required=True, default={}),
        field("items_per_page", "int", required=True, default=20),
        field("play_help_video_audio", "bool", required=True, default=False),
        field("cosense_sync_enabled", "bool", required=True, default=False),
        field("notion_sync_enabled", "bool", required=True, default=False),
        field("gyazo_sync_enabled", "bool", required=True, default=False),
        field("quizlet_sync_enabled", "bool", required=True, default=False),
        *_timestamps(),
    ),
    description="Per-user preferences; at most one row per user",
)

ALL_ENTITIES: tuple[EntityTypeDef, ...] = (
    Note,
    Page,
    Deck,
    Card,
    StudyGoal,
    LearningLog,
    Milestone,
    UserSettings,
)


def build_registry(version: int = STORE_VERSION) -> SchemaRegistry:
    """Build and freeze a registry holding every entity type."""
    registry = SchemaRegistry(version=version)
    for entity in ALL_ENTITIES:
        registry.register(entity)
    registry.freeze()
    return registry


def get_registry() -> SchemaRegistry:
    """Get the process-wide frozen registry, building it on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = build_registry()
        return _registry


def reset_registry() -> None:
    """Reset the process-wide registry (for testing only)."""
    global _registry
    with _registry_lock:
        _registry = None
