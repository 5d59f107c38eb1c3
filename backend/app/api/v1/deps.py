"""Request-scoped dependencies shared by the dispatch-core routers."""

from typing import Annotated

from fastapi import Depends

from app.core.auth import Actor, get_actor
from app.services.audit import AuditSink, AuditTrail, get_audit_sink

CurrentActor = Annotated[Actor, Depends(get_actor)]


async def get_trail(
    actor: CurrentActor,
    sink: Annotated[AuditSink, Depends(get_audit_sink)],
) -> AuditTrail:
    return AuditTrail(sink, actor)


Trail = Annotated[AuditTrail, Depends(get_trail)]
