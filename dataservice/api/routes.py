from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..core.errors import SerializationError
from ..core.message import Message
from ..messaging.interfaces import IMessageQueue
from ..services.documents import DocumentService
from ..services.todos import TodoService
from ..stores.documents import Document
from .schemas import (
    DocumentIn,
    DocumentOut,
    MessageIn,
    MessageRequest,
    PublishResponse,
    QueueHealth,
    TodoIn,
    TodoOut,
)


def get_todo_service(request: Request) -> TodoService:
    return request.app.state.todos


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.documents


def get_queue(request: Request) -> IMessageQueue:
    return request.app.state.queue


todo_router = APIRouter(prefix="/api/todo", tags=["todo"])
document_router = APIRouter(prefix="/api/mongo", tags=["mongo"])
queue_router = APIRouter(prefix="/api/messagequeue", tags=["messagequeue"])


# Todos

@todo_router.get("", response_model=list[TodoOut])
async def list_todos(service: TodoService = Depends(get_todo_service)):
    return await service.list_all()


@todo_router.get("/pending", response_model=list[TodoOut])
async def pending_todos(service: TodoService = Depends(get_todo_service)):
    return await service.pending()


@todo_router.get("/category/{category}", response_model=list[TodoOut])
async def todos_by_category(category: str, service: TodoService = Depends(get_todo_service)):
    return await service.by_category(category)


@todo_router.get("/{todo_id}", response_model=TodoOut)
async def get_todo(todo_id: int, service: TodoService = Depends(get_todo_service)):
    todo = await service.get(todo_id)
    if todo is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


@todo_router.post("", response_model=TodoOut, status_code=status.HTTP_201_CREATED)
async def create_todo(
    body: TodoIn, response: Response, service: TodoService = Depends(get_todo_service)
):
    todo = await service.create(body.fields())
    response.headers["Location"] = f"{todo_router.prefix}/{todo.id}"
    return todo


@todo_router.put("/{todo_id}", response_model=TodoOut)
async def update_todo(todo_id: int, body: TodoIn, service: TodoService = Depends(get_todo_service)):
    if body.id is not None and body.id != todo_id:
        raise HTTPException(status_code=400, detail="ID mismatch")
    todo = await service.update(todo_id, body.fields())
    if todo is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


@todo_router.delete("/{todo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_todo(todo_id: int, service: TodoService = Depends(get_todo_service)):
    if not await service.delete(todo_id):
        raise HTTPException(status_code=404, detail="Todo not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Documents

def _to_document(body: DocumentIn) -> Document:
    return Document(
        name=body.name, content=body.content, metadata=body.metadata, tags=body.tags
    )


def _to_out(document: Document) -> DocumentOut:
    return DocumentOut(**asdict(document))


@document_router.get("", response_model=list[DocumentOut])
async def list_documents(service: DocumentService = Depends(get_document_service)):
    return [_to_out(d) for d in await service.list_all()]


@document_router.get("/search", response_model=list[DocumentOut])
async def search_documents(
    term: str = Query(""), service: DocumentService = Depends(get_document_service)
):
    if not term.strip():
        raise HTTPException(status_code=400, detail="Search term is required")
    return [_to_out(d) for d in await service.search(term)]


@document_router.get("/tag/{tag}", response_model=list[DocumentOut])
async def documents_by_tag(tag: str, service: DocumentService = Depends(get_document_service)):
    return [_to_out(d) for d in await service.by_tag(tag)]


@document_router.get("/{document_id}", response_model=DocumentOut)
async def get_document(document_id: str, service: DocumentService = Depends(get_document_service)):
    document = await service.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return _to_out(document)


@document_router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def create_document(
    body: DocumentIn, response: Response, service: DocumentService = Depends(get_document_service)
):
    document = await service.create(_to_document(body))
    response.headers["Location"] = f"{document_router.prefix}/{document.id}"
    return _to_out(document)


@document_router.put("/{document_id}", response_model=DocumentOut)
async def update_document(
    document_id: str, body: DocumentIn, service: DocumentService = Depends(get_document_service)
):
    document = await service.update(document_id, _to_document(body))
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return _to_out(document)


@document_router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(document_id: str, service: DocumentService = Depends(get_document_service)):
    if not await service.delete(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Message queue

@queue_router.post("/publish", response_model=PublishResponse)
async def publish_message(body: MessageRequest, queue: IMessageQueue = Depends(get_queue)):
    try:
        result = await queue.publish(
            body.content,
            destination=body.queue_name or "default",
            message_type=body.message_type or "info",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    result.raise_for_error()
    return PublishResponse(message="Message published successfully", message_id=result.message.id)


@queue_router.post("/publish/detailed", response_model=PublishResponse)
async def publish_detailed_message(
    body: MessageIn,
    queue_name: str = Query("default", alias="queueName"),
    queue: IMessageQueue = Depends(get_queue),
):
    fields = body.model_dump(exclude_none=True)
    try:
        message = Message(**fields)
        result = await queue.publish(message, destination=queue_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    # reserved or unserializable properties
    if isinstance(result.error, SerializationError):
        raise HTTPException(status_code=400, detail=str(result.error))
    result.raise_for_error()
    return PublishResponse(
        message="Detailed message published successfully", message_id=result.message.id
    )


@queue_router.post("/queue/{queue_name}", response_model=PublishResponse)
async def create_queue(
    queue_name: str, durable: bool = True, queue: IMessageQueue = Depends(get_queue)
):
    try:
        await queue.declare(queue_name, durable)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PublishResponse(message=f"Queue '{queue_name}' created successfully")


@queue_router.get("/health", response_model=QueueHealth)
async def queue_health(queue: IMessageQueue = Depends(get_queue)):
    return QueueHealth(healthy=queue.is_healthy(), timestamp=datetime.now(timezone.utc))
