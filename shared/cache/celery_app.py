"""
Configuración de Celery para tareas asíncronas

La entrega de tickets corre fuera de la transacción de emisión; los
reintentos viven aquí.
"""
from celery import Celery
from kombu import Queue, Exchange
import os
import logging

logger = logging.getLogger(__name__)

# Configuración de Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_MAX_CONNECTIONS = int(os.getenv("CELERY_REDIS_MAX_CONNECTIONS", "50"))

# Crear aplicación Celery
celery_app = Celery(
    "qrgate",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "services.ticket_purchase.tasks.email_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")

celery_app.conf.task_queues = (
    # Cola default para entrega de tickets
    Queue("default", default_exchange, routing_key="default"),
    # Cola de baja prioridad para reintentos de entrega
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "send_order_tickets_email": {"queue": "default"},
}

celery_app.conf.update(
    # Serialización
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    # Límites de tiempo
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,

    # Solo 1 tarea por worker a la vez
    worker_prefetch_multiplier=1,

    broker_pool_limit=REDIS_MAX_CONNECTIONS,
    redis_max_connections=REDIS_MAX_CONNECTIONS,
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    # ACK late: confirmar tarea solo cuando termina (previene pérdida de entregas)
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    worker_concurrency=int(os.getenv("CELERY_WORKER_CONCURRENCY", "4")),
    worker_max_tasks_per_child=1000,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_annotations={
        "send_order_tickets_email": {"rate_limit": "30/m"},  # 30 emails por minuto
    },
)

logger.info(
    "Celery configurado - Broker: %s, Pool limit: %d, Concurrency: %d",
    REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL,
    REDIS_MAX_CONNECTIONS,
    celery_app.conf.worker_concurrency
)
