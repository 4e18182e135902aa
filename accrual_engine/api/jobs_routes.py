import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from accrual_engine.core.auth_dependencies import require_admin_token
from accrual_engine.core.exceptions import TaskDisabledError, TaskNotFoundError
from accrual_engine.schemas.scheduler_schema import TaskStatus
from accrual_engine.services.scheduler import SchedulerRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"], dependencies=[Depends(require_admin_token)])


def get_scheduler(request: Request) -> SchedulerRegistry:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduler is not running")
    return scheduler


def _status_or_404(scheduler: SchedulerRegistry, name: str) -> TaskStatus:
    task_status = scheduler.get_task_status(name)
    if task_status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f'Task "{name}" not found')
    return task_status


@router.get("", response_model=List[TaskStatus])
async def list_jobs(scheduler: SchedulerRegistry = Depends(get_scheduler)):
    return scheduler.get_all_tasks_status()


@router.get("/{name}", response_model=TaskStatus)
async def get_job(name: str, scheduler: SchedulerRegistry = Depends(get_scheduler)):
    return _status_or_404(scheduler, name)


@router.post("/{name}/run")
async def run_job(name: str, scheduler: SchedulerRegistry = Depends(get_scheduler)):
    try:
        started = await scheduler.run(name)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TaskDisabledError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(f"Manual run of task {name} requested (executed={started})")
    return {
        "executed": started,
        "message": "Task executed" if started else "Task is already running; request dropped",
        "task": scheduler.get_task_status(name),
    }


@router.post("/{name}/enable", response_model=TaskStatus)
async def enable_job(name: str, scheduler: SchedulerRegistry = Depends(get_scheduler)):
    try:
        scheduler.enable(name)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _status_or_404(scheduler, name)


@router.post("/{name}/disable", response_model=TaskStatus)
async def disable_job(name: str, scheduler: SchedulerRegistry = Depends(get_scheduler)):
    try:
        scheduler.disable(name)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _status_or_404(scheduler, name)
