"""Calendar domain event catalog."""

from __future__ import annotations

CALENDAR_MAPPING_RULE_APPLIED = "calendar.mapping_rule.applied"
CALENDAR_MAPPING_RULE_DELETED = "calendar.mapping_rule.deleted"
CALENDAR_CANDIDATES_IGNORED = "calendar.candidates.ignored"
CALENDAR_HOME_STAYS_CONFIRMED = "calendar.home_stays.confirmed"
CALENDAR_SOURCE_IMPORTED = "calendar.source.imported"
CALENDAR_SOURCE_CONNECTED = "calendar.source.connected"
CALENDAR_SOURCE_DISCONNECTED = "calendar.source.disconnected"

EVENT_CATALOG = {
    CALENDAR_MAPPING_RULE_APPLIED: {
        "version": "v1",
        "payload": {
            "rule_id": "int",
            "child_id": "str",
            "calendar_source_id": "str",
            "match_type": "str",
            "match_value": "str",
            "home_id": "str",
            "auto_confirm": "bool",
            "events_updated": "int",
        },
    },
    CALENDAR_MAPPING_RULE_DELETED: {
        "version": "v1",
        "payload": {
            "rule_id": "int",
            "child_id": "str",
            "calendar_source_id": "str",
            "events_updated": "int",
        },
    },
    CALENDAR_CANDIDATES_IGNORED: {
        "version": "v1",
        "payload": {
            "ignore_entry_id": "int",
            "child_id": "str",
            "calendar_source_id": "str",
            "title": "str",
            "ignored": "int",
        },
    },
    CALENDAR_HOME_STAYS_CONFIRMED: {
        "version": "v1",
        "payload": {
            "calendar_source_id": "str",
            "child_id": "str",
            "confirmed": "int",
        },
    },
    CALENDAR_SOURCE_IMPORTED: {
        "version": "v1",
        "payload": {
            "calendar_source_id": "str",
            "child_id": "str",
            "created": "int",
            "updated": "int",
            "deleted": "int",
            "relabeled": "int",
            "synced_at": "datetime",
        },
    },
    CALENDAR_SOURCE_CONNECTED: {
        "version": "v1",
        "payload": {
            "calendar_source_id": "str",
            "child_id": "str",
            "provider": "str",
        },
    },
    CALENDAR_SOURCE_DISCONNECTED: {
        "version": "v1",
        "payload": {
            "calendar_source_id": "str",
            "child_id": "str",
            "provider": "str",
            "events_removed": "int",
        },
    },
}
