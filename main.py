from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException, status

from poolsync import db
from poolsync.api_models import InstanceRequest, InstanceView
from poolsync.bigip import BigIPPoolStore
from poolsync.k8s import KubeCredentials
from poolsync.lifecycle import LifecycleController
from poolsync.models import InstanceConfig, InstanceRecord, PoolConfig, effective_poll_interval
from poolsync.registry import ConflictError

app = FastAPI(title="poolsync: Kubernetes endpoints to BIG-IP pools")

_controller: LifecycleController | None = None


def get_controller() -> LifecycleController:
    global _controller
    if _controller is None:
        _controller = LifecycleController(store=BigIPPoolStore())
    return _controller


@app.on_event("startup")
def startup() -> None:
    db.init_db()


def _to_config(req: InstanceRequest) -> InstanceConfig:
    creds = None
    if req.auth is not None:
        try:
            creds = KubeCredentials.from_base64(req.auth.client_cert, req.auth.client_key, req.auth.ca_cert)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return InstanceConfig(
        name=req.name,
        endpoint=req.endpoint,
        namespace=req.namespace,
        service_name=req.service_name,
        pool=req.pool,
        pool_config=PoolConfig(load_balancing_mode=req.pool_type, monitor=req.health_monitor),
        poll_interval_s=effective_poll_interval(req.poll_interval_s),
        credentials=creds,
    )


def _view(rec: InstanceRecord, ctl: LifecycleController) -> InstanceView:
    return InstanceView(
        name=rec.name,
        pool=rec.pool,
        state=rec.state.value,
        namespace=rec.config.namespace,
        service_name=rec.config.service_name,
        poll_interval_s=rec.config.poll_interval_s,
        running=ctl.running(rec.name),
        updated_at=rec.updated_at,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "healthy"}


@app.get("/instances", response_model=list[InstanceView])
def list_instances(ctl: LifecycleController = Depends(get_controller)):
    return [_view(r, ctl) for r in ctl.list()]


@app.get("/instances/{name}", response_model=InstanceView)
def get_instance(name: str, ctl: LifecycleController = Depends(get_controller)):
    rec = ctl.get(name)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"Unknown instance '{name}'")
    return _view(rec, ctl)


@app.post("/instances", response_model=InstanceView, status_code=status.HTTP_202_ACCEPTED)
def start_instance(req: InstanceRequest, ctl: LifecycleController = Depends(get_controller)):
    try:
        rec = ctl.start(_to_config(req))
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _view(rec, ctl)


@app.put("/instances/{name}", response_model=InstanceView, status_code=status.HTTP_202_ACCEPTED)
def update_instance(name: str, req: InstanceRequest, ctl: LifecycleController = Depends(get_controller)):
    if req.name != name:
        raise HTTPException(status_code=400, detail="Instance name in path and body differ")
    try:
        rec = ctl.update(_to_config(req))
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if rec is None:
        raise HTTPException(status_code=404, detail=f"Unknown instance '{name}'")
    return _view(rec, ctl)


@app.delete("/instances/{name}", status_code=status.HTTP_202_ACCEPTED)
def stop_instance(name: str, ctl: LifecycleController = Depends(get_controller)):
    rec = ctl.stop(name)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"Unknown instance '{name}'")
    return {"name": rec.name, "pool": rec.pool, "state": rec.state.value}


@app.get("/events")
def events(limit: int = 100, instance: str | None = None):
    limit = max(1, min(1000, limit))
    return db.latest_events(limit, instance)
