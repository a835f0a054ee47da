"""
Tests for batch statistics
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from invoicex.db.models import AuditEvent, Document
from invoicex.exceptions import BatchNotFoundError
from invoicex.models.invoice import BatchStatus
from invoicex.services.statistics import (
    calculate_statistics,
    format_amount,
    format_processing_time,
)
from invoicex.utils import utcnow


def _doc(status, amount=None, currency=None, duration_ms=None):
    started = completed = None
    if duration_ms is not None:
        started = datetime(2024, 1, 15, 9, 0, 0)
        completed = started + timedelta(milliseconds=duration_ms)
    return Document(
        owner_id='user_1',
        file_name='invoice.pdf',
        status=status,
        total_amount=amount,
        currency=currency,
        processing_started_at=started,
        processing_completed_at=completed
    )


class TestCalculateStatistics:
    """Tests for calculate_statistics"""

    def test_counts(self):
        """Test status counters"""
        stats = calculate_statistics([
            _doc('processed'),
            _doc('failed'),
            _doc('validation_failed'),
            _doc('pending'),
            _doc('queued'),
            _doc('processing'),
        ])
        assert stats.total == 6
        assert stats.processed == 1
        assert stats.failed == 2
        assert stats.pending == 1
        assert stats.queued == 1
        assert stats.processing == 1
        assert stats.success_rate == 17

    def test_empty(self):
        """Test statistics of an empty batch"""
        stats = calculate_statistics([])
        assert stats.total == 0
        assert stats.success_rate == 0
        assert stats.total_amount is None
        assert stats.currency is None
        assert stats.average_processing_time_ms is None

    def test_amounts_only_count_processed(self):
        """Test totals ignore failed documents"""
        stats = calculate_statistics([
            _doc('processed', 100.0, 'EUR'),
            _doc('processed', 50.5, 'EUR'),
            _doc('processed', 10.0, 'USD'),
            _doc('failed', 999.0, 'USD'),
        ])
        assert stats.total_amount == 160.5
        assert stats.average_amount == 53.5
        assert stats.currency == 'EUR'

    def test_average_processing_time(self):
        """Test processing time averages processed documents"""
        stats = calculate_statistics([
            _doc('processed', duration_ms=1000),
            _doc('processed', duration_ms=3000),
            _doc('pending'),
        ])
        assert stats.average_processing_time_ms == 2000.0


class TestFormatting:
    """Tests for display helpers"""

    @pytest.mark.parametrize('ms, expected', [
        (None, '-'),
        (850, '850ms'),
        (12500, '12.5s'),
        (125000, '2m 5s'),
    ])
    def test_format_processing_time(self, ms, expected):
        """Test duration formatting"""
        assert format_processing_time(ms) == expected

    def test_format_amount(self):
        """Test amount formatting"""
        assert format_amount(1234.5, 'USD') == '$1,234.50'
        assert format_amount(10, 'eur') == '€10.00'
        assert format_amount(99.9, 'CHF') == '99.90 CHF'
        assert format_amount(None, 'USD') == '-'


class TestStatisticsAggregator:
    """Tests for StatisticsAggregator.refresh"""

    def test_refresh_writes_counters(self, factory, statistics):
        """Test counters are persisted on the batch"""
        batch = factory.batch()
        factory.document(batch_id=batch.id, status='processed', file_name='a.pdf',
                         total_amount=40.0, currency='USD')
        factory.document(batch_id=batch.id, status='failed', file_name='b.pdf')

        refresh = statistics.refresh(batch.id)

        assert refresh.status == BatchStatus.PARTIAL
        assert refresh.changed
        stored = factory.get_batch(batch.id)
        assert stored.status == 'partial'
        assert stored.total_invoices == 2
        assert stored.processed_count == 1
        assert stored.failed_count == 1
        assert stored.total_amount == 40.0
        assert stored.currency == 'USD'
        assert stored.completed_at is not None

    def test_refresh_is_idempotent(self, factory, statistics):
        """Test refreshing twice gives identical counters"""
        batch = factory.batch()
        factory.document(batch_id=batch.id, status='processed', file_name='a.pdf', total_amount=10.0)
        factory.document(batch_id=batch.id, status='pending', file_name='b.pdf')

        first = statistics.refresh(batch.id)
        second = statistics.refresh(batch.id)

        assert first.statistics == second.statistics
        assert first.status == second.status
        assert not second.changed

    def test_completed_at_cleared_when_leaving_terminal(self, factory, statistics, db):
        """Test completed_at follows terminal status"""
        batch = factory.batch()
        document = factory.document(batch_id=batch.id, status='failed')
        statistics.refresh(batch.id)
        assert factory.get_batch(batch.id).completed_at is not None

        with db.transaction() as session:
            session.get(Document, document.id).status = 'queued'
        refresh = statistics.refresh(batch.id)

        assert refresh.status == BatchStatus.PROCESSING
        assert factory.get_batch(batch.id).completed_at is None

    def test_status_change_is_audited(self, factory, statistics, db):
        """Test a status change records a request_updated event"""
        batch = factory.batch()
        factory.document(batch_id=batch.id, status='processed')
        statistics.refresh(batch.id)

        with db.session() as session:
            events = list(session.execute(
                select(AuditEvent).where(AuditEvent.event_type == 'request_updated')
            ).scalars())
        assert len(events) == 1
        assert events[0].previous_value == {'status': 'draft'}
        assert events[0].new_value == {'status': 'completed'}

    def test_missing_batch(self, statistics):
        """Test refreshing an unknown batch"""
        with pytest.raises(BatchNotFoundError):
            statistics.refresh('bat_missing')

    def test_deleted_batch(self, factory, statistics):
        """Test refreshing a soft-deleted batch"""
        batch = factory.batch(deleted_at=utcnow())
        with pytest.raises(BatchNotFoundError):
            statistics.refresh(batch.id)
