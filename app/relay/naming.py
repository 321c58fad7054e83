"""
Topic and subscription naming.

Topics are scoped by environment; subscriptions additionally by service,
so two services subscribed to the same model get independent copies.
"""

SEPARATOR = "__"


def topic_name(environment: str, model_name: str) -> str:
    """``{environment}__{model_name}``"""
    return SEPARATOR.join((environment, model_name))


def subscription_name(environment: str, service_name: str, model_name: str) -> str:
    """``{environment}__{service_name}__{model_name}``"""
    return SEPARATOR.join((environment, service_name, model_name))
