"""Newsletter delivery, campaign sending and campaign analytics."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from flask import current_app

from ..services.mailer import OutgoingEmail, newsletter_html, personalise
from ..services.queries import TableQuery
from ..utils.dates import now_iso
from . import api_bp, database
from .envelope import ApiError, json_body, success_response

logger = logging.getLogger(__name__)


def _messages(subscribers: List[Dict[str, Any]], subject: str, content: str) -> List[OutgoingEmail]:
    site_url = current_app.settings.site_url
    secret = current_app.config['SECRET_KEY']
    return [
        OutgoingEmail(
            to=subscriber['email'],
            subject=personalise(subject, subscriber),
            html=newsletter_html(personalise(content, subscriber), subscriber['email'], site_url, secret),
            tag=subscriber.get('id'),
        )
        for subscriber in subscribers
    ]


@api_bp.route('/newsletter/send', methods=['POST'])
def send_newsletter():
    body = json_body()
    subscriber_ids = body.get('subscriberIds')
    if not isinstance(subscriber_ids, list) or not subscriber_ids:
        raise ApiError('Subscriber IDs are required', 400)
    if not body.get('subject') or not body.get('content'):
        raise ApiError('Subject and content are required', 400)

    query = TableQuery('newsletter_subscriptions').where('id', subscriber_ids, 'in').where('status', 'subscribed')
    subscribers = database().select(query).rows
    if not subscribers:
        raise ApiError('No active subscribers found', 404)

    results = current_app.mailer.send_many(_messages(subscribers, body['subject'], body['content']))
    failures = [{'email': result.to, 'error': result.error} for result in results if not result.success]
    successful = len(results) - len(failures)

    message = f'Newsletter sent to {successful} subscribers'
    if failures:
        message += f', {len(failures)} failed'
    logger.info(message)
    return success_response(
        {'total': len(results), 'successful': successful, 'failed': len(failures), 'results': failures},
        message,
    )


def segment_query(segment: Mapping[str, Any]) -> TableQuery:
    """Subscribed recipients narrowed by a campaign's ``segment_filters``."""

    query = TableQuery('newsletter_subscriptions').where('status', 'subscribed')
    if segment.get('status'):
        query.where('status', segment['status'])
    interests = segment.get('interests')
    if isinstance(interests, str):
        interests = [item.strip() for item in interests.split(',') if item.strip()]
    if interests:
        query.where('interests', list(interests), 'ov')
    if segment.get('subscribed_after'):
        query.where('subscribed_at', segment['subscribed_after'], 'gte')
    if segment.get('subscribed_before'):
        query.where('subscribed_at', segment['subscribed_before'], 'lte')
    return query


def _campaign_or_404(campaign_id: str) -> Dict[str, Any]:
    campaign = database().get('email_campaigns', campaign_id)
    if campaign is None:
        raise ApiError('Campaign not found', 404)
    return campaign


@api_bp.route('/email/campaigns/<campaign_id>/send', methods=['POST'])
def send_campaign(campaign_id: str):
    db = database()
    campaign = _campaign_or_404(campaign_id)
    if campaign.get('status') != 'draft':
        raise ApiError('Only draft campaigns can be sent', 400)

    recipients = db.select(segment_query(campaign.get('segment_filters') or {})).rows
    if not recipients:
        raise ApiError('No subscribers match the campaign criteria', 400)

    db.update_by_id('email_campaigns', campaign_id, {
        'status': 'sending',
        'total_recipients': len(recipients),
        'sent_at': now_iso(),
        'updated_at': now_iso(),
    })

    try:
        results = current_app.mailer.send_many(_messages(recipients, campaign['subject'], campaign['content']))
        db.insert_many('email_campaign_sends', [
            {
                'campaign_id': campaign_id,
                'subscriber_id': result.tag,
                'status': 'sent' if result.success else 'failed',
                'sent_at': now_iso(),
                'error_message': result.error,
            }
            for result in results
        ])
    except Exception:
        logger.warning('Campaign %s failed while sending; returning it to draft', campaign_id)
        db.update_by_id('email_campaigns', campaign_id, {'status': 'draft', 'sent_at': None, 'updated_at': now_iso()})
        raise

    sent = sum(1 for result in results if result.success)
    db.update_by_id('email_campaigns', campaign_id, {
        'status': 'sent',
        'sent_count': sent,
        'updated_at': now_iso(),
    })
    message = f'Campaign sent to {sent} recipients'
    logger.info('%s (campaign %s)', message, campaign_id)
    return success_response({'message': message, 'recipient_count': len(recipients), 'sent_count': sent}, message)


@api_bp.route('/email/campaigns/<campaign_id>/analytics', methods=['GET'])
def campaign_analytics(campaign_id: str):
    campaign = _campaign_or_404(campaign_id)
    return success_response(current_app.analytics_service.campaign_report(campaign))
