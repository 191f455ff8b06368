# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..errors import InvalidInputError
from ..extensions import db
from ..models import DocumentSequence

DOC_ORDER = "ORDER"
DOC_RETURN = "RETURN"


def next_document_number(
    *,
    branch_id: int,
    document_type: str,
    prefix: str,
    pad: int = 5,
) -> str:
    """
    Allocate the next document number for a branch/type inside the caller's
    transaction, e.g. "ORD-003-00042".

    The counter row is bumped with an atomic UPDATE; the first number for a
    branch/type inserts the row instead.
    """
    if not branch_id:
        raise InvalidInputError("branch_id is required for numbering")
    if not document_type:
        raise InvalidInputError("document_type is required for numbering")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current(branch_id, document_type) - 1
    else:
        # A concurrent first allocation trips the unique constraint; the
        # IntegrityError aborts the transaction and surfaces to the caller.
        db.session.add(DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{branch_id:03d}-{next_num:0{pad}d}"


def _current(branch_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )


def next_order_number(branch_id: int) -> str:
    return next_document_number(
        branch_id=branch_id,
        document_type=DOC_ORDER,
        prefix=current_app.config.get("ORDER_NUMBER_PREFIX", "ORD"),
        pad=current_app.config.get("DOCUMENT_NUMBER_PAD", 5),
    )


def next_return_number(branch_id: int) -> str:
    return next_document_number(
        branch_id=branch_id,
        document_type=DOC_RETURN,
        prefix=current_app.config.get("RETURN_NUMBER_PREFIX", "RET"),
        pad=current_app.config.get("DOCUMENT_NUMBER_PAD", 5),
    )
