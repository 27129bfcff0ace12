from .NodeRegistry import (
    NODE_REGISTRY,
    OUTCOME_PORTS,
    FieldSpec,
    KindSpec,
    PortSignature,
    PortSpec,
    config_schema_for,
    default_output_port,
    describe_registry,
    effective_source_port,
    get_kind_spec,
    ports_for,
    resolved_config,
    route_labels,
)
