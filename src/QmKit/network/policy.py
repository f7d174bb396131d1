# === NAVMAP v1 ===
# {
#   "module": "QmKit.network.policy",
#   "purpose": "HTTP policy constants and defaults.",
#   "sections": []
# }
# === /NAVMAP ===

"""HTTP policy constants and defaults.

Header names, media types, and status ranges the engines and the response
classifier agree on.  Tunable values (timeouts, pool sizes, retry defaults)
live in :mod:`QmKit.settings`; the constants here are protocol facts.
"""

# ============================================================================
# Header Names
# ============================================================================

#: Header carrying the credential returned by the supplier
AUTH_HEADER = "Authorization"

#: Request/response body media type header
CONTENT_TYPE_HEADER = "Content-Type"

#: Header that may carry a download filename for binary responses
CONTENT_DISPOSITION_HEADER = "Content-Disposition"

#: Header sent on reconnect so servers can resume an event stream
LAST_EVENT_ID_HEADER = "Last-Event-ID"


# ============================================================================
# Media Types
# ============================================================================

#: Media type used when the engine serializes a structured body
JSON_MEDIA_TYPE = "application/json"

#: RFC 7807 problem document media type
PROBLEM_JSON_MEDIA_TYPE = "application/problem+json"

#: Structured-syntax suffix marking any JSON-family media type (RFC 6839)
JSON_SUFFIX = "+json"

#: Media type of server-sent event streams
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


# ============================================================================
# Status Classes
# ============================================================================

#: Half-open range of statuses eligible for retry (server errors only)
RETRYABLE_STATUS_RANGE = range(500, 600)

#: Half-open range of statuses treated as success
SUCCESS_STATUS_RANGE = range(200, 300)


# ============================================================================
# Credential Handling
# ============================================================================

#: Scheme prefix stripped before a credential is placed in a query parameter
BEARER_PREFIX = "Bearer "
