"""Aggregations behind the analytics page, the dashboard and campaign reports.

Counts are independent reads, so each report fans them out over a small
thread pool and assembles the result once every query has returned.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..utils.dates import parse_datetime, to_iso, utcnow
from .database_service import DatabaseService
from .queries import Filter, TableQuery, eq

logger = logging.getLogger(__name__)

COURSE_VIEWS_PER_COURSE = 25
SERVICE_VIEWS_PER_SERVICE = 30
OFFER_VIEWS_PER_OFFER = 10


def percentage_change(current: float, previous: float) -> float:
    if previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def previous(self) -> 'DateRange':
        length = self.end - self.start
        return DateRange(self.start - length, self.start - timedelta(milliseconds=1))

    def filters(self, column: str) -> List[Filter]:
        return [Filter(column, 'gte', to_iso(self.start)), Filter(column, 'lte', to_iso(self.end))]


def parse_range(start_raw: Any, end_raw: Any) -> DateRange:
    """Build a :class:`DateRange`; raises ``ValueError`` with a client-facing message."""

    if not start_raw or not end_raw:
        raise ValueError('Start date and end date are required')
    start, end = parse_datetime(start_raw), parse_datetime(end_raw)
    if start is None or end is None:
        raise ValueError('Invalid date format')
    if start > end:
        raise ValueError('Start date must be before end date')
    return DateRange(start, end)


def month_range(now: datetime, months_back: int = 0) -> DateRange:
    year, month = now.year, now.month - months_back
    while month < 1:
        month += 12
        year -= 1
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    next_month = datetime(year + (month == 12), month % 12 + 1, 1, tzinfo=timezone.utc)
    return DateRange(start, next_month - timedelta(seconds=1))


def _average(values: Sequence[Any]) -> float:
    numbers = [float(value) for value in values if value is not None]
    return sum(numbers) / len(numbers) if numbers else 0.0


class AnalyticsService:
    def __init__(self, database: DatabaseService, max_workers: int = 8) -> None:
        self._db = database
        self._max_workers = max_workers

    def _parallel(self, tasks: Mapping[str, Callable[[], Any]]) -> Dict[str, Any]:
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {name: pool.submit(task) for name, task in tasks.items()}
            return {name: future.result() for name, future in futures.items()}

    def _count(self, table: str, *filters: Filter) -> Callable[[], int]:
        return lambda: self._db.count(table, filters)

    def _rows(self, query: TableQuery) -> Callable[[], List[Dict[str, Any]]]:
        return lambda: self._db.select(query).rows

    # ------------------------------------------------------------ analytics
    def period_report(self, window: DateRange) -> Dict[str, Any]:
        previous = window.previous()
        results = self._parallel({
            'contacts': self._count('contact_submissions', *window.filters('created_at')),
            'newsletter': self._count('newsletter_subscriptions', *window.filters('subscribed_at')),
            'reviews': self._count('reviews', *window.filters('created_at')),
            'testimonials': self._count('testimonials', *window.filters('created_at')),
            'contacts_prev': self._count('contact_submissions', *previous.filters('created_at')),
            'newsletter_prev': self._count('newsletter_subscriptions', *previous.filters('subscribed_at')),
            'reviews_prev': self._count('reviews', *previous.filters('created_at')),
            'testimonials_prev': self._count('testimonials', *previous.filters('created_at')),
            'courses': self._rows(TableQuery('courses', columns=('id', 'is_active'))),
            'services': self._rows(TableQuery('services', columns=('id', 'is_active'))),
            'offers': self._rows(TableQuery('offers', columns=('id', 'is_active', 'usage_count'))),
            'course_reviews': self._rows(
                TableQuery('reviews', columns=('course_id', 'rating'), filters=[eq('is_approved', True), Filter('course_id', 'not_null')])
            ),
            'service_reviews': self._rows(
                TableQuery('reviews', columns=('course_id', 'rating'), filters=[eq('is_approved', True), Filter('course_id', 'is_null')])
            ),
        })

        courses, services, offers = results['courses'], results['services'], results['offers']
        total_usage = sum(offer.get('usage_count') or 0 for offer in offers)
        conversion = total_usage / (len(offers) * OFFER_VIEWS_PER_OFFER) * 100 if offers else 0

        return {
            'userEngagement': {
                'totalContacts': results['contacts'],
                'totalNewsletter': results['newsletter'],
                'totalReviews': results['reviews'],
                'totalTestimonials': results['testimonials'],
                'contactTrend': percentage_change(results['contacts'], results['contacts_prev']),
                'newsletterTrend': percentage_change(results['newsletter'], results['newsletter_prev']),
                'reviewTrend': percentage_change(results['reviews'], results['reviews_prev']),
                'testimonialTrend': percentage_change(results['testimonials'], results['testimonials_prev']),
            },
            'contentPerformance': {
                'courses': {
                    'total': len(courses),
                    'active': sum(1 for course in courses if course.get('is_active')),
                    'averageRating': _average([review.get('rating') for review in results['course_reviews']]),
                    'totalViews': len(courses) * COURSE_VIEWS_PER_COURSE,
                },
                'services': {
                    'total': len(services),
                    'active': sum(1 for service in services if service.get('is_active')),
                    'averageRating': _average([review.get('rating') for review in results['service_reviews']]),
                    'totalViews': len(services) * SERVICE_VIEWS_PER_SERVICE,
                },
                'offers': {
                    'total': len(offers),
                    'active': sum(1 for offer in offers if offer.get('is_active')),
                    'totalUsage': total_usage,
                    'conversionRate': conversion,
                },
            },
        }

    # ------------------------------------------------------------ dashboard
    def dashboard_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        this_month, last_month = month_range(now), month_range(now, 1)
        subscribed = eq('status', 'subscribed')

        def recent(table: str, columns: Sequence[str], *filters: Filter):
            return self._rows(
                TableQuery(table, columns=columns, filters=list(filters), order=[('created_at', True)], limit=10)
            )

        results = self._parallel({
            'courses': self._count('courses', eq('is_active', True)),
            'services': self._count('services', eq('is_active', True)),
            'contacts': self._count('contact_submissions'),
            'newsletter': self._count('newsletter_subscriptions', subscribed),
            'reviews': self._count('reviews', eq('is_approved', True)),
            'testimonials': self._count('testimonials', eq('is_approved', True)),
            'offers': self._count('offers', eq('is_active', True)),
            'campaigns': self._rows(TableQuery('email_campaigns', columns=('id', 'status', 'sent_count'))),
            'recent_contacts': recent('contact_submissions', ('id', 'name', 'subject', 'created_at')),
            'recent_reviews': recent('reviews', ('id', 'name', 'title', 'created_at'), eq('is_approved', True)),
            'recent_testimonials': recent('testimonials', ('id', 'name', 'content', 'created_at'), eq('is_approved', True)),
            'month_contacts': self._count('contact_submissions', *this_month.filters('created_at')),
            'last_month_contacts': self._count('contact_submissions', *last_month.filters('created_at')),
            'month_newsletter': self._count('newsletter_subscriptions', subscribed, *this_month.filters('subscribed_at')),
            'last_month_newsletter': self._count('newsletter_subscriptions', subscribed, *last_month.filters('subscribed_at')),
        })

        activity = (
            [
                {'type': 'contact', 'title': f"New contact: {row.get('name')}", 'subtitle': row.get('subject'), 'timestamp': row.get('created_at')}
                for row in results['recent_contacts']
            ]
            + [
                {'type': 'review', 'title': f"New review: {row.get('title')}", 'subtitle': f"By {row.get('name')}", 'timestamp': row.get('created_at')}
                for row in results['recent_reviews']
            ]
            + [
                {'type': 'testimonial', 'title': 'New testimonial', 'subtitle': f"By {row.get('name')}", 'timestamp': row.get('created_at')}
                for row in results['recent_testimonials']
            ]
        )
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        activity.sort(key=lambda item: parse_datetime(item['timestamp']) or epoch, reverse=True)

        campaigns = results['campaigns']
        contacts_change = percentage_change(results['month_contacts'], results['last_month_contacts'])
        return {
            'statistics': {
                'totalCourses': results['courses'],
                'totalServices': results['services'],
                'totalContacts': results['contacts'],
                'totalNewsletter': results['newsletter'],
                'totalReviews': results['reviews'],
                'totalTestimonials': results['testimonials'],
                'totalOffers': results['offers'],
                'totalCampaigns': len(campaigns),
                'sentCampaigns': sum(1 for campaign in campaigns if campaign.get('status') == 'sent'),
                'totalEmailsSent': sum(campaign.get('sent_count') or 0 for campaign in campaigns),
            },
            'recentActivity': activity[:10],
            'trends': {
                'contacts': {
                    'current': results['month_contacts'],
                    'previous': results['last_month_contacts'],
                    'change': contacts_change,
                },
                'newsletter': {
                    'current': results['month_newsletter'],
                    'previous': results['last_month_newsletter'],
                    'change': percentage_change(results['month_newsletter'], results['last_month_newsletter']),
                },
                'revenue': {'current': 0, 'previous': 0, 'change': 0},
                'bookings': {
                    'current': results['month_contacts'],
                    'previous': results['last_month_contacts'],
                    'change': contacts_change,
                },
            },
        }

    # ------------------------------------------------------------ campaigns
    def campaign_report(self, campaign: Mapping[str, Any]) -> Dict[str, Any]:
        sends = self._db.select(
            TableQuery('email_campaign_sends', filters=[eq('campaign_id', campaign['id'])])
        ).rows
        total = len(sends)
        opened = sum(1 for send in sends if send.get('opened_at'))
        clicked = sum(1 for send in sends if send.get('clicked_at'))
        bounced = sum(1 for send in sends if send.get('bounced_at'))
        unsubscribed = sum(1 for send in sends if send.get('unsubscribed_at'))

        hourly: Dict[str, int] = {}
        for send in sends:
            opened_at = parse_datetime(send.get('opened_at'))
            if opened_at:
                key = str(opened_at.hour)
                hourly[key] = hourly.get(key, 0) + 1

        return {
            'campaign': {'id': campaign['id'], 'name': campaign.get('name'), 'sent_at': campaign.get('sent_at')},
            'overview': {
                'total_recipients': campaign.get('total_recipients') or 0,
                'sent_count': campaign.get('sent_count') or 0,
                'opened_count': opened,
                'clicked_count': clicked,
                'bounced_count': bounced,
                'unsubscribed_count': unsubscribed,
            },
            'rates': {
                'open_rate': _rate(opened, total),
                'click_rate': _rate(clicked, total),
                'click_to_open_rate': _rate(clicked, opened),
                'bounce_rate': _rate(bounced, total),
                'unsubscribe_rate': _rate(unsubscribed, total),
            },
            'hourly_breakdown': hourly,
        }

    # --------------------------------------------------------------- export
    def export_dataset(self, window: DateRange) -> Dict[str, Any]:
        def windowed(table: str, columns: Sequence[str], column: str = 'created_at'):
            return self._rows(TableQuery(table, columns=columns, filters=window.filters(column), order=[(column, True)]))

        catalogue = ('title', 'slug', 'description', 'price', 'duration', 'is_active', 'created_at')
        sections = self._parallel({
            'contacts': windowed('contact_submissions', ('name', 'email', 'subject', 'message', 'is_read', 'created_at')),
            'newsletter': windowed('newsletter_subscriptions', ('email', 'first_name', 'last_name', 'status', 'subscribed_at'), 'subscribed_at'),
            'reviews': windowed('reviews', ('name', 'email', 'title', 'content', 'rating', 'is_approved', 'created_at')),
            'testimonials': windowed(
                'testimonials',
                ('name', 'email', 'company', 'position', 'content', 'rating', 'is_featured', 'is_approved', 'created_at'),
            ),
            'courses': self._rows(TableQuery('courses', columns=catalogue)),
            'services': self._rows(TableQuery('services', columns=catalogue)),
            'offers': self._rows(TableQuery('offers', columns=(
                'title', 'description', 'discount_type', 'discount_value', 'valid_from',
                'valid_until', 'usage_count', 'is_active', 'created_at',
            ))),
            'campaigns': windowed('email_campaigns', (
                'name', 'subject', 'status', 'total_recipients', 'sent_count', 'opened_count', 'clicked_count', 'created_at',
            )),
        })
        return {'totals': {name: len(rows) for name, rows in sections.items()}, **sections}
