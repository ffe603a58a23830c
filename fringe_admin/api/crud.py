"""Generic list/create/get/update/delete endpoints for every declared resource."""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import request

from ..resources import RESOURCES, ChangeContext, Resource, get_resource
from ..services.queries import Filter, eq
from ..utils.auth import AuthError, has_role
from ..utils.dates import now_iso
from . import api_bp, current_user, database
from .envelope import (
    ApiError,
    json_body,
    paginated,
    pagination_params,
    parse_int,
    require_fields,
    success_response,
)

logger = logging.getLogger(__name__)

ALIASES = {"newsletter/templates": ("email/templates",)}


def _authorise(role: str) -> None:
    if not has_role(current_user(), role):
        raise AuthError("Insufficient permissions", 403)


def _writable(resource: Resource, body: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in body.items() if key not in resource.writable_exclusions}


def _check_unique(resource: Resource, ctx: ChangeContext) -> None:
    for rule in resource.unique:
        value = ctx.values.get(rule.column, ctx.payload.get(rule.column))
        if not value:
            continue
        filters = [eq(rule.column, value)]
        if ctx.existing is not None:
            filters.append(Filter("id", "neq", ctx.existing["id"]))
        if ctx.db.exists(resource.table, filters):
            raise ApiError(rule.message, 409)


def list_records(resource: Resource):
    _authorise(resource.min_role)
    query = resource.build_list_query(request.args)
    db = database()

    if resource.list_style == "paginated":
        page, limit = pagination_params(resource.default_limit)
        result = db.select(query.page(page, limit))
        rows = [resource.present(row) for row in result.rows]
        return success_response(paginated(rows, page, limit, result.total))

    if resource.list_style == "offset":
        limit = min(max(parse_int(request.args.get("limit"), resource.default_limit), 1), 100)
        offset = max(parse_int(request.args.get("offset"), 0), 0)
        query.take(limit, offset)
        query.count = True
        result = db.select(query)
        rows = [resource.present(row) for row in result.rows]
        return success_response({"data": rows, "count": result.total, "limit": limit, "offset": offset})

    result = db.select(query)
    return success_response([resource.present(row) for row in result.rows])


def create_record(resource: Resource):
    _authorise(resource.min_role)
    body = json_body()
    require_fields(body, resource.required)

    ctx = ChangeContext(database(), _writable(resource, body), None, current_user())
    for validate in resource.validators:
        validate(ctx)
    _check_unique(resource, ctx)
    for hook in resource.on_create:
        hook(ctx)

    values = {**resource.defaults(), **ctx.payload, **ctx.values}
    if resource.tracks_updated_at:
        values.setdefault("updated_at", now_iso())
    created = ctx.db.insert(resource.table, values)
    if resource.relations:
        created = ctx.db.get(resource.table, created["id"], resource.relations) or created
    logger.info("Created %s %s", resource.table, created.get("id"))
    return success_response(resource.present(created), f"{resource.label} created successfully", 201)


def _load_or_404(resource: Resource, record_id: str, with_relations: bool = False) -> Dict[str, Any]:
    relations = resource.relations if with_relations else ()
    record = database().get(resource.table, record_id, relations)
    if record is None:
        raise ApiError(f"{resource.label} not found", 404)
    return record


def get_record(resource: Resource, record_id: str):
    _authorise(resource.min_role)
    return success_response(resource.present(_load_or_404(resource, record_id, with_relations=True)))


def update_record(resource: Resource, record_id: str):
    _authorise(resource.min_role)
    existing = _load_or_404(resource, record_id)
    body = json_body()

    ctx = ChangeContext(database(), _writable(resource, body), existing, current_user())
    for validate in resource.validators:
        validate(ctx)
    _check_unique(resource, ctx)
    for hook in resource.on_update:
        hook(ctx)

    values = {**ctx.payload, **ctx.values}
    if resource.tracks_updated_at:
        values["updated_at"] = now_iso()
    if values:
        ctx.db.update_by_id(resource.table, record_id, values)
    updated = ctx.db.get(resource.table, record_id, resource.relations)
    if updated is None:
        raise ApiError(f"{resource.label} not found", 404)
    return success_response(resource.present(updated), f"{resource.label} updated successfully")


def delete_record(resource: Resource, record_id: str):
    _authorise(resource.delete_role)
    existing = _load_or_404(resource, record_id)
    ctx = ChangeContext(database(), {}, existing, current_user())
    for guard in resource.on_delete:
        guard(ctx)
    ctx.db.delete(resource.table, [eq("id", record_id)])
    logger.info("Deleted %s %s", resource.table, record_id)
    return success_response(None, f"{resource.label} deleted successfully")


def _collection_view(name: str):
    def view():
        resource = get_resource(name)
        if request.method == "POST":
            return create_record(resource)
        return list_records(resource)

    return view


def _item_view(name: str):
    def view(record_id: str):
        resource = get_resource(name)
        if request.method == "PUT":
            return update_record(resource, record_id)
        if request.method == "DELETE":
            return delete_record(resource, record_id)
        return get_record(resource, record_id)

    return view


def register_resources() -> None:
    for resource in RESOURCES:
        for path in (resource.name,) + ALIASES.get(resource.name, ()):
            endpoint = path.replace("/", "_").replace("-", "_")
            api_bp.add_url_rule(
                f"/{path}",
                endpoint=f"{endpoint}_collection",
                view_func=_collection_view(resource.name),
                methods=["GET", "POST"],
            )
            api_bp.add_url_rule(
                f"/{path}/<record_id>",
                endpoint=f"{endpoint}_item",
                view_func=_item_view(resource.name),
                methods=["GET", "PUT", "DELETE"],
            )


register_resources()
