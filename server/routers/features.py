"""
Features Router
===============

API endpoints for the feature board of one project.

Implements:
- GET /api/features?projectPath= - List features (priority order)
- POST /api/features?projectPath= - Create a feature
- GET /api/features/:id?projectPath= - Get one feature
- PATCH /api/features/:id?projectPath= - Partial update
- DELETE /api/features/:id?projectPath= - Delete a feature

Dependency edits are validated: unknown ids are rejected with 400 and edges
that would close a cycle with 409.
"""

import logging

from fastapi import APIRouter, Depends, Query, Response

from automode.auto_mode_service import AutoModeService
from automode.dependency_resolver import would_create_circular_dependency
from automode.exceptions import FeatureNotFoundError
from automode.feature_store import FeatureStore
from automode.secure_fs import SecureFS

from ..dependencies import get_auto_mode_service, get_feature_store, get_secure_fs_dep
from ..exceptions import BadRequestError, ConflictError, NotFoundError
from ..schemas import FeatureCreate, FeatureListResponse, FeatureResponse, FeatureUpdate

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/features", tags=["features"])

# Columns that reject NULL; an explicit null in a PATCH body is ignored for these
_NON_NULLABLE_FIELDS = frozenset({"description", "status", "priority", "skip_tests"})


def validated_project_path(
    project_path: str = Query(..., alias="projectPath", min_length=1),
    secure_fs: SecureFS = Depends(get_secure_fs_dep),
) -> str:
    """Resolve the projectPath query parameter to an existing, allowed directory."""
    resolved = secure_fs.validate_path(project_path)
    if not resolved.is_dir():
        raise NotFoundError("project", project_path)
    return str(resolved)


def _check_dependencies(
    all_features: list[dict],
    feature_id: str | None,
    dependencies: list[str],
) -> None:
    known = {str(f["id"]) for f in all_features}
    unknown = [dep for dep in dependencies if dep not in known]
    if unknown:
        raise BadRequestError(
            f"Unknown dependency: {', '.join(unknown)}",
            details={"unknownDependencies": unknown},
        )
    if feature_id is None:
        return
    for dep in dependencies:
        if would_create_circular_dependency(all_features, feature_id, dep):
            raise ConflictError(
                f"Adding dependency {dep} to {feature_id} would create a cycle",
                details={"featureId": feature_id, "dependencyId": dep},
            )


@router.get("", response_model=FeatureListResponse)
async def list_features(
    project_path: str = Depends(validated_project_path),
    store: FeatureStore = Depends(get_feature_store),
):
    features = await store.get_all(project_path)
    return FeatureListResponse(features=features, total=len(features))


@router.post("", response_model=FeatureResponse, status_code=201)
async def create_feature(
    request: FeatureCreate,
    project_path: str = Depends(validated_project_path),
    store: FeatureStore = Depends(get_feature_store),
):
    data = request.model_dump(exclude_none=True)

    if request.dependencies:
        all_features = await store.get_all(project_path)
        if request.id and request.id in request.dependencies:
            raise ConflictError(f"Feature {request.id} cannot depend on itself")
        _check_dependencies(all_features, None, request.dependencies)

    if request.id and await store.get(project_path, request.id) is not None:
        raise ConflictError(f"Feature {request.id} already exists", details={"id": request.id})

    return await store.create(project_path, data)


@router.get("/{feature_id}", response_model=FeatureResponse)
async def get_feature(
    feature_id: str,
    project_path: str = Depends(validated_project_path),
    store: FeatureStore = Depends(get_feature_store),
):
    feature = await store.get(project_path, feature_id)
    if feature is None:
        raise FeatureNotFoundError(feature_id, project_path)
    return feature


@router.patch("/{feature_id}", response_model=FeatureResponse)
async def update_feature(
    feature_id: str,
    request: FeatureUpdate,
    project_path: str = Depends(validated_project_path),
    store: FeatureStore = Depends(get_feature_store),
):
    updates = {
        key: value
        for key, value in request.model_dump(exclude_unset=True).items()
        if value is not None or key not in _NON_NULLABLE_FIELDS
    }

    if request.dependencies:
        all_features = await store.get_all(project_path)
        if not any(str(f["id"]) == feature_id for f in all_features):
            raise FeatureNotFoundError(feature_id, project_path)
        _check_dependencies(all_features, feature_id, request.dependencies)

    feature = await store.update(project_path, feature_id, updates)
    if feature is None:
        raise FeatureNotFoundError(feature_id, project_path)
    return feature


@router.delete("/{feature_id}", status_code=204)
async def delete_feature(
    feature_id: str,
    project_path: str = Depends(validated_project_path),
    store: FeatureStore = Depends(get_feature_store),
    service: AutoModeService = Depends(get_auto_mode_service),
):
    if feature_id in service.running_features:
        raise ConflictError(f"Feature {feature_id} is running; stop it before deleting")
    if not await store.delete(project_path, feature_id):
        raise FeatureNotFoundError(feature_id, project_path)
    return Response(status_code=204)
