from pytest_archon import archrule

MESSAGE_MODEL = (
    "common_messaging.config",
    "common_messaging.envelope",
    "common_messaging.exceptions",
    "common_messaging.header_detectors",
    "common_messaging.outcome",
    "common_messaging.registry",
    "common_messaging.serialization",
    "common_messaging.validation",
)


def test_message_model_is_transport_free() -> None:
    """
    Schemas, envelopes, header detection and outcomes must work without a
    broker client, so they are usable (and testable) offline.
    """
    rule = archrule("message_model_is_transport_free")
    for module in MESSAGE_MODEL:
        rule = rule.match(module)
    (
        rule.should_not_import("aio_pika*")
        .should_not_import("aiormq*")
        .should_not_import("pamqp*")
        .check("common_messaging", skip_type_checking=True, only_direct_imports=True)
    )


def test_message_model_does_not_depend_on_endpoints() -> None:
    """
    The message model sits below publishers, subscribers and the context.
    """
    rule = archrule("message_model_layering")
    for module in MESSAGE_MODEL:
        rule = rule.match(module)
    (
        rule.should_not_import("common_messaging.publisher")
        .should_not_import("common_messaging.subscriber")
        .should_not_import("common_messaging.context")
        .should_not_import("common_messaging.connection")
        .check("common_messaging", skip_type_checking=True, only_direct_imports=True)
    )


def test_primitives_isolation() -> None:
    """
    Exceptions and configuration are leaves: they import nothing else from
    the package.
    """
    (
        archrule("primitives_isolation")
        .match("common_messaging.exceptions")
        .match("common_messaging.config")
        .should_not_import("common_messaging.registry")
        .should_not_import("common_messaging.envelope")
        .should_not_import("common_messaging.connection")
        .should_not_import("common_messaging.context")
        .should_not_import("common_messaging.publisher")
        .should_not_import("common_messaging.subscriber")
        .check("common_messaging", only_direct_imports=True)
    )


def test_endpoints_do_not_depend_on_context() -> None:
    """
    Endpoints receive their context as an argument; the context module
    composes them, never the other way round.
    """
    (
        archrule("endpoints_receive_context")
        .match("common_messaging.publisher")
        .match("common_messaging.subscriber")
        .match("common_messaging.connection")
        .should_not_import("common_messaging.context")
        .check("common_messaging", skip_type_checking=True, only_direct_imports=True)
    )
