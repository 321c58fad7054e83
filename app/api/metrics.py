"""
Prometheus metrics for relay operations.

These metrics track publish and delivery activity per service and model.
"""

from prometheus_client import Counter

# Publisher (server role)
envelopes_published_total = Counter(
    "relay_envelopes_published_total",
    "Total number of change envelopes accepted by the transport",
    ["service_name", "model_name", "method_name"],
)

envelopes_filtered_total = Counter(
    "relay_envelopes_filtered_total",
    "Total number of envelopes vetoed by the filter chain",
    ["service_name", "model_name", "method_name"],
)

publish_failures_total = Counter(
    "relay_publish_failures_total",
    "Total number of failed publishes or affected-record queries",
    ["service_name", "model_name", "stage"],  # stage: query/publish
)

# Subscriber (client role)
messages_received_total = Counter(
    "relay_messages_received_total",
    "Total number of messages delivered to a subscription",
    ["service_name", "model_name"],
)

messages_discarded_total = Counter(
    "relay_messages_discarded_total",
    "Total number of delivered messages discarded without invoking the callback",
    ["service_name", "model_name", "reason"],  # reason: decode/model_mismatch/actor
)

handler_failures_total = Counter(
    "relay_handler_failures_total",
    "Total number of event callbacks that raised",
    ["service_name", "model_name"],
)
