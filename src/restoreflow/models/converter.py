"""Conversion between typed pass records and DynamicParameters.

The mapping is driven by each record's ``FIELDS`` table, so every
setting a record can hold has exactly one dynamic counterpart. Going
typed -> dynamic -> typed returns an equal record. Going the other way
rejects anything the record cannot hold instead of dropping it.
"""

import logging
from typing import Any, Dict

from restoreflow.exceptions import SchemaMismatch
from restoreflow.models.base import PassParameters
from restoreflow.models.passes import PassType, pass_record_class
from restoreflow.models.schema import DynamicParameters

logger = logging.getLogger(__name__)


def to_dynamic(pass_type: PassType, params: PassParameters) -> DynamicParameters:
    """Convert a typed record to a dynamic value bag.

    Unset optional settings are left out of ``values``.

    Args:
        pass_type: Pass the record belongs to
        params: Typed parameter record

    Returns:
        DynamicParameters for the pass

    Raises:
        TypeError: If ``params`` is not the record type of ``pass_type``
    """
    record_class = pass_record_class(pass_type)
    if not isinstance(params, record_class):
        raise TypeError(
            f"{pass_type.value} expects {record_class.__name__}, got {type(params).__name__}"
        )

    values: Dict[str, Any] = {}
    for field_spec in record_class.FIELDS:
        value = getattr(params, field_spec.attr)
        if value is None and field_spec.optional:
            continue
        values[field_spec.key] = field_spec.dump(value)

    return DynamicParameters(
        filter_id=record_class.FILTER_ID,
        method=params.method_id,
        enabled=getattr(params, "enabled"),
        values=values,
    )


def from_dynamic(pass_type: PassType, dynamic: DynamicParameters) -> PassParameters:
    """Convert a dynamic value bag back into the typed record of a pass.

    Settings absent from the bag take the record defaults; for optional
    settings that default is "unset".

    Args:
        pass_type: Pass to build a record for
        dynamic: Generic values

    Returns:
        Typed parameter record

    Raises:
        SchemaMismatch: On a foreign filter id, an unknown method, an
            unknown parameter name or a value of the wrong kind
    """
    record_class = pass_record_class(pass_type)
    filter_id = record_class.FILTER_ID

    if dynamic.filter_id != filter_id:
        raise SchemaMismatch(
            filter_id, reason=f"parameters belong to filter '{dynamic.filter_id}'"
        )

    changes: Dict[str, Any] = {"enabled": bool(dynamic.enabled)}
    for key, raw in dynamic.values.items():
        field_spec = record_class.field_for(key)
        if field_spec is None:
            logger.warning("Rejecting unknown parameter %s for %s", key, filter_id)
            raise SchemaMismatch(filter_id, key, "unknown parameter")
        changes[field_spec.attr] = field_spec.load(raw, filter_id)

    record = record_class(**changes)  # type: ignore[call-arg]
    return record.with_method_id(dynamic.method)
