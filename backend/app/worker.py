# app/worker.py
from celery import Celery
from app.core.config import settings

celery = Celery(
    "car_marketplace_messaging",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.notifications"]
)

# Configuración
celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutos máximo por tarea
    worker_max_tasks_per_child=1000,
    # Configuración de reintentos
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_retry_delay=60,  # 1 minuto entre reintentos
    task_max_retries=5,
    # El envío de un mensaje no debe quedarse esperando a un broker caído
    task_publish_retry=True,
    task_publish_retry_policy={
        "max_retries": 2,
        "interval_start": 0,
        "interval_step": 0.2,
        "interval_max": 0.5,
    },
)
