from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from .config import get_settings
from .errors import BrokerUnavailable, ExecutionConflict, ExecutionNotFound, WorkflowNotFound
from .events import BrokerClient, BrokerSink, WorkflowEventConsumer, WorkflowEventPublisher
from .executions import ExecutionLogger
from .log import configure_logging
from .models import (
    ActivityRequest,
    ConsumerActionRequest,
    ExecutionCompleteRequest,
    ExecutionStartRequest,
    HealthResponse,
    NotifyRequest,
    PublishRequest,
    SlackChannelsRequest,
    TemplateRequest,
    TestEventRequest,
    TestMessageRequest,
    WorkflowCreateRequest,
)
from .workflow import WorkflowService, WorkflowStore

load_dotenv()

settings = get_settings()
configure_logging(settings.log_level)

# --- Composition root: every long-lived collaborator is built here ---

broker = BrokerClient(settings) if settings.broker_enabled else None
publisher = WorkflowEventPublisher(
    sink=BrokerSink(broker) if broker is not None else None,
    broker=broker,
)
consumer = WorkflowEventConsumer(broker, heartbeat_interval=settings.consumer_heartbeat_seconds)
workflow_store = WorkflowStore(settings.workflows_dir)
execution_logger = ExecutionLogger(settings.executions_db, workflow_names=workflow_store.get_workflow_name)
workflow_service = WorkflowService(workflow_store, publisher, settings=settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    workflow_service.http = httpx.AsyncClient(timeout=settings.http_timeout)
    if settings.consumer_autostart:
        await consumer.start()
    try:
        yield
    finally:
        # uvicorn turns SIGINT/SIGTERM into lifespan shutdown
        await consumer.stop()
        if broker is not None:
            await broker.disconnect()
        if workflow_service.http is not None:
            await workflow_service.http.aclose()
            workflow_service.http = None


app = FastAPI(
    title="FlowRelay API",
    description="Workflow lifecycle events, multi-destination dispatch and execution history",
    version="0.1.0",
    lifespan=lifespan,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.get("/api/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", consumer=consumer.state.value)


# --- Broker diagnostics ---

@app.post("/api/kafka/test")
async def send_test_message(request: TestMessageRequest):
    if not request.message:
        raise HTTPException(status_code=400, detail="Message is required")
    try:
        sent = await publisher.send_test_message(request.message, request.user_id)
    except BrokerUnavailable as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to send message to Kafka", "details": str(exc)},
        )
    return {
        "success": True,
        "message": "Test message sent to Kafka successfully",
        "data": sent.model_dump(mode="json", by_alias=True),
    }


@app.get("/api/kafka/test")
async def test_producer_connection():
    if broker is None:
        raise HTTPException(status_code=500, detail={"error": "Kafka is disabled"})
    try:
        await broker.connect()
    except BrokerUnavailable as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "Kafka connection test failed", "details": str(exc)},
        )
    return {"success": True, "message": "Kafka connection test successful", "timestamp": _now_iso()}


@app.post("/api/kafka/consumer")
async def manage_consumer(request: ConsumerActionRequest):
    if request.action == "start":
        await consumer.start()
        message = "Kafka consumer started"
    elif request.action == "stop":
        await consumer.stop()
        message = "Kafka consumer stopped"
    else:
        raise HTTPException(status_code=400, detail='Invalid action. Use "start" or "stop"')
    return {
        "success": True,
        "message": message,
        "state": consumer.state.value,
        "timestamp": _now_iso(),
    }


@app.post("/api/workflow/test-event")
async def trigger_test_event(request: TestEventRequest):
    event = await publisher.publish(request.event_type, request.workflow_id, request.user_id, request.data)
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid event type or payload")
    return {
        "success": True,
        "message": "Workflow event triggered successfully",
        "event": event.model_dump(mode="json", by_alias=True),
    }


@app.get("/api/workflow/test-event")
def test_event_usage():
    return {
        "message": "Workflow Event Test Endpoint",
        "usage": "POST with { eventType, workflowId, userId, data }",
        "examples": [
            {
                "eventType": "workflow.created",
                "workflowId": "test-workflow-123",
                "data": {"name": "Test Workflow", "description": "A test workflow"},
            },
            {
                "eventType": "workflow.published",
                "workflowId": "test-workflow-123",
                "data": {"published": True},
            },
            {
                "eventType": "workflow.template_updated",
                "workflowId": "test-workflow-123",
                "data": {"channelType": "Discord", "template": "Hello from Discord!"},
            },
        ],
    }


# --- Workflows ---

@app.post("/api/workflows")
async def create_workflow(request: WorkflowCreateRequest):
    try:
        workflow = await workflow_service.create_workflow(request.user_id, request.name, request.description)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"message": "Workflow created successfully", "workflow": workflow.model_dump(mode="json")}


@app.get("/api/workflows")
def list_workflows(user_id: str):
    return [wf.model_dump(mode="json") for wf in workflow_store.list_workflows(user_id)]


@app.get("/api/workflows/{workflow_id}")
def get_workflow(workflow_id: str):
    try:
        return workflow_store.get_workflow(workflow_id).model_dump(mode="json")
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")


@app.get("/api/workflows/{workflow_id}/nodes-edges")
def get_nodes_edges(workflow_id: str):
    try:
        graph = workflow_store.get_nodes_edges(workflow_id)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return graph.model_dump(mode="json") if graph is not None else None


@app.post("/api/workflows/{workflow_id}/publish")
async def publish_workflow(workflow_id: str, request: PublishRequest):
    try:
        message = await workflow_service.publish_workflow(workflow_id, request.user_id, request.publish)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"message": message}


@app.post("/api/workflows/{workflow_id}/template")
async def save_template(workflow_id: str, request: TemplateRequest):
    try:
        message = await workflow_service.update_template(
            workflow_id,
            request.user_id,
            request.type,
            request.content,
            channels=request.channels,
            access_token=request.access_token,
            notion_db_id=request.notion_db_id,
            webhook_url=request.webhook_url,
        )
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"message": message}


@app.post("/api/workflows/{workflow_id}/notify")
async def notify_workflow_channels(workflow_id: str, request: NotifyRequest):
    try:
        summary = await workflow_service.notify_channels(workflow_id, request.content, request.type)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return summary.model_dump()


@app.post("/api/slack/channels")
async def list_slack_channels(request: SlackChannelsRequest):
    channels = await workflow_service.list_slack_channels(request.access_token)
    return [channel.model_dump() for channel in channels]


@app.delete("/api/workflows/{workflow_id}")
async def delete_workflow(workflow_id: str, user_id: str):
    deleted = await workflow_service.delete_workflow(workflow_id, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"status": "deleted", "workflow_id": workflow_id}


# --- Executions ---

@app.post("/api/executions")
def start_execution(request: ExecutionStartRequest):
    execution_id = execution_logger.start_execution(request.workflow_id, request.user_id, request.metadata)
    return {"id": execution_id}


@app.post("/api/executions/{execution_id}/complete")
def complete_execution(execution_id: str, request: ExecutionCompleteRequest):
    try:
        execution = execution_logger.complete_execution(execution_id, request.status, request.error)
    except ExecutionNotFound:
        raise HTTPException(status_code=404, detail="Execution not found")
    except ExecutionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return execution.model_dump(mode="json")


@app.post("/api/executions/{execution_id}/activities")
def log_activity(execution_id: str, request: ActivityRequest):
    try:
        activity_id = execution_logger.log_activity(
            execution_id,
            request.user_id,
            request.type,
            request.message,
            service=request.service,
            workflow_name=request.workflow_name,
            metadata=request.metadata,
        )
    except ExecutionNotFound:
        raise HTTPException(status_code=404, detail="Execution not found")
    return {"id": activity_id}


@app.get("/api/workflows/{workflow_id}/executions")
def list_workflow_executions(workflow_id: str, limit: int = 20):
    return [e.model_dump(mode="json") for e in execution_logger.get_workflow_executions(workflow_id, limit)]


# --- Dashboard analytics (never fail) ---

@app.get("/api/analytics/executions-today")
def executions_today(user_id: str) -> int:
    return execution_logger.get_user_stats(user_id).executions_today


@app.get("/api/analytics/success-rate")
def success_rate(user_id: str) -> float:
    return execution_logger.get_user_stats(user_id).success_rate


@app.get("/api/analytics/recent-activities")
def recent_activities(user_id: str, limit: int = 10):
    return [
        a.model_dump(by_alias=True)
        for a in execution_logger.get_recent_activities(user_id, limit)
    ]
