"""Declarative descriptions of the tables the console edits.

Each :class:`Resource` carries what the generic list/create/get/update/delete
views need: search columns, query-string filters, ordering, required and unique
fields, validation and the workflow hooks that stamp timestamps on status
changes. The views live in :mod:`fringe_admin.api.crud`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .api.envelope import ApiError, is_valid_email
from .services.database_service import DatabaseService
from .services.queries import Filter, Relation, TableQuery, eq
from .utils.dates import now_iso, parse_datetime

READ_ONLY_FIELDS = ("id", "created_at")


@dataclass
class ChangeContext:
    """State handed to validators and hooks for a single create or update."""

    db: DatabaseService
    payload: Dict[str, Any]
    existing: Optional[Dict[str, Any]]
    user: Optional[Mapping[str, Any]]
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def merged(self) -> Dict[str, Any]:
        return {**(self.existing or {}), **self.payload}

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get("id") if self.user else None

    def touches(self, *names: str) -> bool:
        return any(name in self.payload for name in names)


Hook = Callable[[ChangeContext], None]


@dataclass(frozen=True)
class FilterParam:
    """Maps a query-string parameter onto a column filter.

    ``kind`` is ``str``, ``int``, ``bool`` (applied whenever the parameter is
    present, true only for the literal ``"true"``) or ``active_only`` (filters
    ``is_active`` when the parameter is ``"true"``).
    """

    param: str
    column: Optional[str] = None
    kind: str = "str"

    def apply(self, query: TableQuery, args: Mapping[str, str]) -> None:
        raw = args.get(self.param)
        if raw is None or raw == "":
            return
        column = self.column or self.param
        if self.kind == "bool":
            query.where(column, raw == "true")
        elif self.kind == "active_only":
            if raw == "true":
                query.where("is_active", True)
        elif self.kind == "int":
            try:
                query.where(column, int(raw))
            except ValueError:
                raise ApiError(f"{self.param} must be an integer", 400) from None
        else:
            query.where(column, raw)


@dataclass(frozen=True)
class UniqueRule:
    column: str
    message: str


@dataclass
class Resource:
    name: str
    table: str
    label: str
    search_columns: Tuple[str, ...] = ()
    filters: Tuple[FilterParam, ...] = ()
    order: Tuple[Tuple[str, bool], ...] = (("created_at", True),)
    sort_columns: Tuple[str, ...] = ()
    default_limit: int = 10
    list_style: str = "paginated"
    required: Tuple[str, ...] = ()
    unique: Tuple[UniqueRule, ...] = ()
    relations: Tuple[Relation, ...] = ()
    defaults: Callable[[], Dict[str, Any]] = dict
    validators: Tuple[Hook, ...] = ()
    on_create: Tuple[Hook, ...] = ()
    on_update: Tuple[Hook, ...] = ()
    on_delete: Tuple[Hook, ...] = ()
    hidden_fields: Tuple[str, ...] = ()
    tracks_updated_at: bool = True
    min_role: str = "editor"
    delete_role: str = "admin"

    @property
    def writable_exclusions(self) -> Tuple[str, ...]:
        return READ_ONLY_FIELDS + tuple(relation.table for relation in self.relations)

    def build_list_query(self, args: Mapping[str, str]) -> TableQuery:
        query = TableQuery(self.table, relations=self.relations)
        query.matching(args.get("search"), self.search_columns)
        for item in self.filters:
            item.apply(query, args)
        sort_by = args.get("sort_by")
        if self.sort_columns and sort_by in self.sort_columns:
            query.order_by(sort_by, args.get("sort_order", "desc") != "asc")
        else:
            for column, descending in self.order:
                query.order_by(column, descending)
        return query

    def present(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if not self.hidden_fields:
            return row
        return {key: value for key, value in row.items() if key not in self.hidden_fields}


# --------------------------------------------------------------------- hooks
def _require_email_format(ctx: ChangeContext) -> None:
    if ctx.touches("email") and not is_valid_email(ctx.payload.get("email")):
        raise ApiError("Invalid email format", 400)


def _require_rating_range(ctx: ChangeContext) -> None:
    if not ctx.touches("rating"):
        return
    try:
        rating = int(ctx.payload["rating"])
    except (TypeError, ValueError):
        rating = 0
    if rating < 1 or rating > 5:
        raise ApiError("Rating must be between 1 and 5", 400)
    ctx.values["rating"] = rating


def _approval_workflow(ctx: ChangeContext) -> None:
    if "is_approved" not in ctx.payload:
        return
    if ctx.payload["is_approved"]:
        ctx.values["approved_at"] = now_iso()
        ctx.values["approved_by"] = ctx.user_id
    else:
        ctx.values["approved_at"] = None
        ctx.values["approved_by"] = None


def _review_response_workflow(ctx: ChangeContext) -> None:
    if "response" not in ctx.payload:
        return
    response = ctx.payload.get("response")
    if isinstance(response, str) and response.strip():
        ctx.values["response"] = response.strip()
        ctx.values["responded_at"] = now_iso()
        ctx.values["responded_by"] = ctx.user_id
    else:
        ctx.values["response"] = None
        ctx.values["responded_at"] = None
        ctx.values["responded_by"] = None


def _contact_response_workflow(ctx: ChangeContext) -> None:
    if "response" not in ctx.payload:
        return
    response = ctx.payload.get("response")
    if response in (None, ""):
        ctx.values["responded_at"] = None
    elif not ctx.payload.get("responded_at"):
        ctx.values["responded_at"] = now_iso()


def _newsletter_status_workflow(ctx: ChangeContext) -> None:
    if not ctx.touches("status"):
        return
    new_status = ctx.payload.get("status")
    if new_status not in NEWSLETTER_STATUSES:
        raise ApiError("Invalid status. Must be pending, subscribed, or unsubscribed", 400)
    old_status = (ctx.existing or {}).get("status")
    if ctx.existing is None or new_status == old_status:
        return
    if new_status == "unsubscribed":
        ctx.values["unsubscribed_at"] = now_iso()
    elif new_status == "subscribed" and old_status == "unsubscribed":
        ctx.values["unsubscribed_at"] = None
        ctx.values["subscribed_at"] = now_iso()


def _normalise_newsletter_email(ctx: ChangeContext) -> None:
    if ctx.touches("email") and isinstance(ctx.payload.get("email"), str):
        ctx.values["email"] = ctx.payload["email"].strip().lower()


def _validate_offer(ctx: ChangeContext) -> None:
    merged = ctx.merged
    if ctx.touches("discount_type") and merged.get("discount_type") not in ("percentage", "fixed"):
        raise ApiError("Discount type must be percentage or fixed", 400)
    if ctx.touches("discount_value", "discount_type"):
        try:
            value = float(merged.get("discount_value"))
        except (TypeError, ValueError):
            raise ApiError("Discount value must be a number", 400) from None
        if value <= 0:
            raise ApiError("Discount value must be greater than 0", 400)
        if merged.get("discount_type") == "percentage" and value > 100:
            raise ApiError("Percentage discount cannot exceed 100%", 400)
    if ctx.touches("valid_from", "valid_until"):
        valid_from = parse_datetime(merged.get("valid_from"))
        valid_until = parse_datetime(merged.get("valid_until"))
        if valid_from is None or valid_until is None:
            raise ApiError("Invalid date format", 400)
        if valid_from >= valid_until:
            raise ApiError("Valid until date must be after valid from date", 400)


BUSINESS_INFO_TYPES = ("text", "email", "phone", "address", "hours", "social")
SETTING_TYPES = ("string", "number", "boolean", "json")
NEWSLETTER_STATUSES = ("pending", "subscribed", "unsubscribed")


def _validate_business_info_type(ctx: ChangeContext) -> None:
    if ctx.touches("type") and ctx.payload.get("type") not in BUSINESS_INFO_TYPES:
        raise ApiError(f"Invalid type. Must be one of: {', '.join(BUSINESS_INFO_TYPES)}", 400)


def _validate_setting_value(ctx: ChangeContext) -> None:
    if not ctx.touches("type", "value"):
        return
    merged = ctx.merged
    kind, value = merged.get("type"), merged.get("value")
    if kind not in SETTING_TYPES:
        raise ApiError(f"Invalid type. Must be one of: {', '.join(SETTING_TYPES)}", 400)
    checks = {
        "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
        "boolean": lambda v: isinstance(v, bool),
        "string": lambda v: isinstance(v, str),
        "json": lambda v: isinstance(v, dict),
    }
    if not checks[kind](value):
        article = "a valid JSON object" if kind == "json" else f"a {kind}"
        raise ApiError(f'Value must be {article} for type "{kind}"', 400)


def _require_existing_template(ctx: ChangeContext) -> None:
    template_id = ctx.payload.get("template_id")
    if template_id and ctx.db.get("email_templates", template_id) is None:
        raise ApiError("Email template not found", 404)


def _coerce_smtp_port(ctx: ChangeContext) -> None:
    if not ctx.touches("port"):
        return
    try:
        ctx.values["port"] = int(ctx.payload["port"])
    except (TypeError, ValueError):
        raise ApiError("Port must be a number", 400) from None


def _single_active_smtp(ctx: ChangeContext) -> None:
    if ctx.existing is None:
        ctx.values["is_active"] = True
        ctx.db.update("email_smtp_settings", {"is_active": False}, [eq("is_active", True)])
    elif ctx.payload.get("is_active") is True:
        ctx.db.update(
            "email_smtp_settings",
            {"is_active": False},
            [eq("is_active", True), Filter("id", "neq", ctx.existing["id"])],
        )


def _guard_referenced(table: str, column: str, message: str) -> Hook:
    def guard(ctx: ChangeContext) -> None:
        if ctx.db.exists(table, [eq(column, ctx.existing["id"])]):
            raise ApiError(message, 409)

    return guard


def _guard_sent_campaign(ctx: ChangeContext) -> None:
    if ctx.existing.get("status") in ("sent", "sending"):
        raise ApiError("Cannot delete a campaign that has been sent or is currently sending", 400)


def _category_defaults() -> Dict[str, Any]:
    return {"sort_order": 0, "is_active": True}


def _campaign_defaults() -> Dict[str, Any]:
    return {
        "status": "draft",
        "segment_filters": {},
        "total_recipients": 0,
        "sent_count": 0,
        "opened_count": 0,
        "clicked_count": 0,
        "bounced_count": 0,
        "unsubscribed_count": 0,
    }


def _newsletter_defaults() -> Dict[str, Any]:
    return {"status": "pending", "subscribed_at": now_iso()}


CATEGORY_RELATION = Relation("courses_categories", "category_id", ("id", "name", "slug"))
SERVICE_CATEGORY_RELATION = Relation("service_categories", "category_id", ("id", "name", "slug"))
TEMPLATE_RELATION = Relation("email_templates", "template_id", ("id", "name", "subject"))


RESOURCES: List[Resource] = [
    Resource(
        name="courses",
        table="courses",
        label="Course",
        search_columns=("title", "description"),
        filters=(FilterParam("category_id"), FilterParam("is_active", kind="bool")),
        required=("title", "slug", "description", "price", "duration"),
        unique=(UniqueRule("slug", "Course slug must be unique"),),
        relations=(CATEGORY_RELATION,),
        defaults=lambda: {"is_active": True},
    ),
    Resource(
        name="categories",
        table="courses_categories",
        label="Category",
        search_columns=("name", "description"),
        filters=(FilterParam("is_active", kind="bool"),),
        order=(("sort_order", False), ("created_at", True)),
        default_limit=50,
        required=("name", "slug"),
        unique=(UniqueRule("slug", "Category slug must be unique"),),
        defaults=_category_defaults,
        on_delete=(_guard_referenced("courses", "category_id", "Cannot delete category that is assigned to courses"),),
    ),
    Resource(
        name="service-categories",
        table="service_categories",
        label="Service category",
        search_columns=("name", "description"),
        filters=(FilterParam("is_active", kind="bool"),),
        order=(("sort_order", False), ("created_at", True)),
        default_limit=50,
        required=("name", "slug"),
        unique=(UniqueRule("slug", "Service category slug must be unique"),),
        defaults=_category_defaults,
        on_delete=(_guard_referenced("services", "category_id", "Cannot delete category that is assigned to services"),),
    ),
    Resource(
        name="services",
        table="services",
        label="Service",
        search_columns=("title", "description"),
        filters=(FilterParam("category_id"), FilterParam("is_active", kind="bool")),
        required=("title", "slug", "description", "price", "duration"),
        unique=(UniqueRule("slug", "Service slug must be unique"),),
        relations=(SERVICE_CATEGORY_RELATION,),
        defaults=lambda: {"is_active": True},
    ),
    Resource(
        name="offers",
        table="offers",
        label="Offer",
        search_columns=("title", "description"),
        filters=(FilterParam("is_active", kind="bool"), FilterParam("discount_type")),
        required=("title", "description", "discount_type", "discount_value", "valid_from", "valid_until"),
        defaults=lambda: {"usage_count": 0, "is_active": True},
        validators=(_validate_offer,),
    ),
    Resource(
        name="faqs",
        table="faqs",
        label="FAQ",
        search_columns=("question", "answer"),
        filters=(FilterParam("category"), FilterParam("is_active", kind="bool")),
        order=(("sort_order", False), ("created_at", True)),
        required=("question", "answer"),
        defaults=_category_defaults,
    ),
    Resource(
        name="contacts",
        table="contact_submissions",
        label="Contact submission",
        search_columns=("name", "email", "subject", "message"),
        filters=(FilterParam("is_read", kind="bool"),),
        sort_columns=("created_at", "name", "email", "subject", "is_read", "responded_at"),
        required=("name", "email", "subject", "message"),
        defaults=lambda: {"is_read": False},
        validators=(_require_email_format,),
        on_update=(_contact_response_workflow,),
        tracks_updated_at=False,
    ),
    Resource(
        name="newsletter",
        table="newsletter_subscriptions",
        label="Newsletter subscription",
        search_columns=("email", "first_name", "last_name"),
        filters=(FilterParam("status"),),
        sort_columns=("created_at", "email", "first_name", "last_name", "status", "subscribed_at"),
        required=("email",),
        unique=(UniqueRule("email", "Email is already subscribed to the newsletter"),),
        defaults=_newsletter_defaults,
        validators=(_require_email_format, _normalise_newsletter_email),
        on_create=(_newsletter_status_workflow,),
        on_update=(_newsletter_status_workflow,),
    ),
    Resource(
        name="reviews",
        table="reviews",
        label="Review",
        search_columns=("name", "email", "title", "content"),
        filters=(
            FilterParam("is_approved", kind="bool"),
            FilterParam("course_id"),
            FilterParam("rating", kind="int"),
        ),
        required=("name", "email", "rating", "title", "content"),
        defaults=lambda: {"is_approved": False},
        validators=(_require_rating_range, _require_email_format),
        on_update=(_approval_workflow, _review_response_workflow),
    ),
    Resource(
        name="testimonials",
        table="testimonials",
        label="Testimonial",
        search_columns=("name", "email", "company", "position", "content"),
        filters=(
            FilterParam("is_approved", kind="bool"),
            FilterParam("is_featured", kind="bool"),
            FilterParam("rating", kind="int"),
        ),
        required=("name", "email", "content", "rating"),
        defaults=lambda: {"is_approved": False, "is_featured": False},
        validators=(_require_rating_range, _require_email_format),
        on_update=(_approval_workflow,),
    ),
    Resource(
        name="business-info",
        table="business_info",
        label="Business info",
        search_columns=("key", "type"),
        filters=(FilterParam("type"), FilterParam("is_active", kind="bool")),
        order=(("type", False), ("key", False), ("created_at", True)),
        required=("key", "value", "type"),
        unique=(UniqueRule("key", "Business info with this key already exists"),),
        defaults=lambda: {"is_active": True},
        validators=(_validate_business_info_type,),
    ),
    Resource(
        name="site-settings",
        table="site_settings",
        label="Site setting",
        search_columns=("key", "description"),
        filters=(FilterParam("category"), FilterParam("type"), FilterParam("is_public", kind="bool")),
        order=(("category", False), ("key", False)),
        required=("key", "type", "category"),
        unique=(UniqueRule("key", "Setting key already exists"),),
        defaults=lambda: {"is_public": False},
        validators=(_validate_setting_value,),
    ),
    Resource(
        name="newsletter/templates",
        table="email_templates",
        label="Email template",
        filters=(FilterParam("category"), FilterParam("active_only", kind="active_only")),
        list_style="plain",
        required=("name", "subject", "content"),
        unique=(UniqueRule("name", "Template name already exists"),),
        defaults=lambda: {"category": "general", "is_active": True},
    ),
    Resource(
        name="email/triggers",
        table="email_triggers",
        label="Email trigger",
        filters=(FilterParam("event_type"), FilterParam("active_only", kind="active_only")),
        list_style="plain",
        required=("name", "event_type"),
        unique=(UniqueRule("name", "Trigger name already exists"),),
        relations=(TEMPLATE_RELATION,),
        defaults=lambda: {"conditions": {}, "is_active": True},
        validators=(_require_existing_template,),
    ),
    Resource(
        name="email/campaigns",
        table="email_campaigns",
        label="Campaign",
        filters=(FilterParam("status"),),
        list_style="offset",
        default_limit=50,
        required=("name", "subject", "content"),
        defaults=_campaign_defaults,
        on_delete=(_guard_sent_campaign,),
    ),
    Resource(
        name="email/smtp",
        table="email_smtp_settings",
        label="SMTP settings",
        list_style="plain",
        required=("host", "port", "from_email"),
        defaults=lambda: {"encryption": "tls"},
        validators=(_coerce_smtp_port,),
        on_create=(_single_active_smtp,),
        on_update=(_single_active_smtp,),
        hidden_fields=("password",),
        min_role="super_admin",
        delete_role="super_admin",
    ),
]

RESOURCES_BY_NAME: Dict[str, Resource] = {resource.name: resource for resource in RESOURCES}


def get_resource(name: str) -> Resource:
    return RESOURCES_BY_NAME[name]


def page_resources() -> Sequence[Resource]:
    """Resources that get a table page in the admin UI."""

    return [resource for resource in RESOURCES if resource.list_style == "paginated"]
