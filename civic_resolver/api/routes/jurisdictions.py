from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from civic_resolver.schemas.jurisdictions import (
    AreaDescriptionOut,
    BatchItemOut,
    BatchResolveRequest,
    JurisdictionBundleOut,
    JurisdictionOut,
    LevelResultOut,
    RepresentativeOut,
    ViolationOut,
)
from civic_resolver.services.aggregator import JurisdictionBundle, ResolutionEngine, get_engine
from civic_resolver.services.errors import InvalidZipCode, JurisdictionUnresolved
from civic_resolver.services.models import QualityViolation, jurisdiction_to_dict, representative_to_dict

router = APIRouter()


@router.get("/{zip_code}", response_model=JurisdictionBundleOut)
async def get_jurisdiction(
    zip_code: str,
    deadline_ms: int | None = Query(default=None, ge=1, le=60000),
    engine: ResolutionEngine = Depends(get_engine),
) -> JurisdictionBundleOut:
    deadline = deadline_ms / 1000.0 if deadline_ms is not None else None
    try:
        bundle = await engine.resolve(zip_code, deadline=deadline)
    except InvalidZipCode as exc:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"zip_code": exc.zip_code, "reason": exc.reason},
        ) from exc
    except JurisdictionUnresolved as exc:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={
                "zip_code": exc.zip_code,
                "reason": exc.reason,
                "violations": [_violation_out(row).model_dump(mode="json") for row in exc.violations],
            },
        ) from exc
    return bundle_out(bundle, engine)


@router.post("/batch", response_model=list[BatchItemOut])
async def resolve_batch(
    payload: BatchResolveRequest,
    engine: ResolutionEngine = Depends(get_engine),
) -> list[BatchItemOut]:
    deadline = payload.deadline_ms / 1000.0 if payload.deadline_ms is not None else None
    items = await engine.resolve_many(payload.zip_codes, deadline=deadline)
    rows: list[BatchItemOut] = []
    for item in items:
        if item.bundle is not None:
            rows.append(BatchItemOut(zip_code=item.zip_code, bundle=bundle_out(item.bundle, engine)))
            continue
        violations = item.error.violations if isinstance(item.error, JurisdictionUnresolved) else []
        rows.append(
            BatchItemOut(
                zip_code=item.zip_code,
                error=str(item.error),
                violations=[_violation_out(row) for row in violations],
            )
        )
    return rows


def bundle_out(bundle: JurisdictionBundle, engine: ResolutionEngine) -> JurisdictionBundleOut:
    description = engine.describe(bundle.jurisdiction)
    return JurisdictionBundleOut(
        status=bundle.status,
        from_cache=bundle.from_cache,
        jurisdiction=JurisdictionOut(**jurisdiction_to_dict(bundle.jurisdiction)),
        area=AreaDescriptionOut(
            title=description.title,
            description=description.description,
            government_structure=description.government_structure,
            representatives=description.representatives,
        ),
        representatives_by_level={
            level: LevelResultOut(
                status=result.status,
                records=[RepresentativeOut(**representative_to_dict(row)) for row in result.records],
                reason=result.reason,
                rejected=[_violation_out(row) for row in result.rejected],
            )
            for level, result in bundle.representatives_by_level.items()
        },
    )


def _violation_out(violation: QualityViolation) -> ViolationOut:
    return ViolationOut(field=violation.field, rule=violation.rule, observed_value=violation.observed_value)
