"""Calendar domain services."""

from homestay.domains.calendar.services.candidate_service import (
    describe_recurrence,
    get_home_stay_candidates,
    group_candidates,
)
from homestay.domains.calendar.services.classification import (
    Classification,
    classify,
    match,
    rule_matches,
    select_rule,
)
from homestay.domains.calendar.services.import_service import (
    ImportResult,
    ImportSummary,
    import_all_sources,
    import_calendar_source,
)
from homestay.domains.calendar.services.mapping_service import (
    IgnoreResult,
    MappingResult,
    confirm_proposed_stays,
    create_mapping_rule,
    delete_mapping_rule,
    ignore_candidates_by_title,
    list_mapping_rules,
    relabel_calendar_source,
)
from homestay.domains.calendar.services.source_service import (
    connect_ics_source,
    disconnect_source,
    list_calendar_sources,
    list_google_calendars,
    mask_feed_url,
    replace_ics_url,
    save_google_sources,
    validate_feed_url,
)

__all__ = [
    "Classification",
    "IgnoreResult",
    "ImportResult",
    "ImportSummary",
    "MappingResult",
    "classify",
    "confirm_proposed_stays",
    "connect_ics_source",
    "create_mapping_rule",
    "delete_mapping_rule",
    "disconnect_source",
    "describe_recurrence",
    "get_home_stay_candidates",
    "group_candidates",
    "ignore_candidates_by_title",
    "import_all_sources",
    "import_calendar_source",
    "list_calendar_sources",
    "list_google_calendars",
    "list_mapping_rules",
    "mask_feed_url",
    "match",
    "relabel_calendar_source",
    "replace_ics_url",
    "rule_matches",
    "save_google_sources",
    "select_rule",
    "validate_feed_url",
]
