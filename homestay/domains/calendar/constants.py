"""Calendar domain constants."""

MATCH_TYPE_EVENT_ID = "event_id"
MATCH_TYPE_TITLE_EXACT = "title_exact"
MATCH_TYPES = (MATCH_TYPE_EVENT_ID, MATCH_TYPE_TITLE_EXACT)

# Higher wins when several rules match one event.
MATCH_TYPE_SPECIFICITY = {
    MATCH_TYPE_EVENT_ID: 2,
    MATCH_TYPE_TITLE_EXACT: 1,
}

CLASSIFICATION_UNCLASSIFIED = "unclassified"
CLASSIFICATION_HOME_STAY = "home_stay"
CLASSIFICATION_IGNORED = "ignored"

CANDIDATE_REASON_ALL_DAY = "all_day"
CANDIDATE_REASON_MULTI_DAY = "multi_day"
CANDIDATE_REASON_RECURRING = "recurring"

RESULTING_EVENT_TYPE_HOME_DAY = "home_day"

PROVIDER_GOOGLE = "google"
PROVIDER_ICS = "ics"
PROVIDERS = (PROVIDER_GOOGLE, PROVIDER_ICS)

MAX_MATCH_VALUE_LENGTH = 255

EVENT_STATUS_CANCELLED = "cancelled"
