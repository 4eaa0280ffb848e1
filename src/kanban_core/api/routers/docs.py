"""Feature doc API endpoints."""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import crud, schemas
from ...access import Capability, get_doc_in_workspace
from ...database import get_db
from ...models import FeatureDoc
from ..dependencies import WorkspaceContext, require

logger = logging.getLogger("kanban-core.api.docs")

router = APIRouter(tags=["docs"])


def _doc_to_summary(doc: FeatureDoc) -> schemas.DocSummaryResponse:
    """Convert a FeatureDoc to its list item, with a content preview instead of the body."""
    return schemas.DocSummaryResponse(
        id=doc.id,
        title=doc.title,
        preview=crud.doc_preview(doc.content),
        number=doc.number,
        status=doc.status,
        parent_doc_id=doc.parent_doc_id,
        archived=doc.archived,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


@router.get("/docs", response_model=schemas.DocListResponse)
def list_docs(
    include_archived: bool = Query(True, alias="includeArchived"),
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    docs = crud.list_docs(db, ctx.workspace_id, include_archived=include_archived)
    return schemas.DocListResponse(docs=[_doc_to_summary(doc) for doc in docs])


@router.post("/docs", response_model=schemas.DocCreatedResponse, status_code=201)
def create_doc(
    payload: schemas.DocCreate,
    ctx: WorkspaceContext = Depends(require(Capability.DOCS_WRITE)),
    db: Session = Depends(get_db),
):
    """
    Create a feature doc.

    - **title**: required
    - **content**: optional markdown body
    - **parentDocId**: optional parent doc in the same workspace
    """
    title = payload.title if isinstance(payload.title, str) else None
    content = payload.content if isinstance(payload.content, str) else None
    doc = crud.create_doc(db, ctx.workspace_id, title, content, parent_doc_id=payload.parent_doc_id)
    return schemas.DocCreatedResponse(id=doc.id, doc=schemas.DocResponse.model_validate(doc))


@router.get("/docs/{doc_id}", response_model=schemas.DocResponse)
def get_doc(
    doc_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    return schemas.DocResponse.model_validate(get_doc_in_workspace(db, ctx.workspace_id, doc_id))


@router.patch("/docs/{doc_id}", response_model=schemas.SuccessResponse)
def update_doc(
    doc_id: str,
    payload: schemas.DocUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.DOCS_WRITE)),
    db: Session = Depends(get_db),
):
    """Partially update a doc. Archiving also archives the doc's tickets."""
    doc = get_doc_in_workspace(db, ctx.workspace_id, doc_id)
    crud.update_doc(db, doc, payload.model_dump(exclude_unset=True))
    return schemas.SuccessResponse()


@router.delete("/docs/{doc_id}", response_model=schemas.SuccessResponse)
def delete_doc(
    doc_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.DOCS_WRITE)),
    db: Session = Depends(get_db),
):
    doc = get_doc_in_workspace(db, ctx.workspace_id, doc_id)
    crud.delete_doc(db, doc)
    return schemas.SuccessResponse()
