"""
Tests for the two-pass allocation: contributor totals, then per-issue percentages.
Issues are built from raw Jira payloads so the normalizer is exercised on the way in.
"""
import unittest
from datetime import datetime, timezone
from allocation.aggregator import (
    allocate,
    allocate_with_summary,
    is_team_member,
    DROP_NOT_TEAM_MEMBER,
    DROP_NO_INTERVAL,
    DROP_EXCLUDED_TYPE,
)
from normalize.models import Team
from normalize.util import normalize_issue

NOW = datetime(2024, 3, 8, 12, 0, tzinfo=timezone.utc)


def history(created, frm, to, field='status'):
    return {'created': created, 'items': [{'field': field, 'fromString': frm, 'toString': to}]}


def raw_issue(key, assignee, histories, summary='', issue_type='Story', status='Done'):
    return {
        'key': key,
        'fields': {
            'summary': summary or f"Work on {key}",
            'assignee': {'displayName': assignee} if assignee else None,
            'issuetype': {'name': issue_type},
            'status': {'name': status},
        },
        'changelog': {'histories': histories},
    }


def done_between(key, assignee, start, end, **kwargs):
    return normalize_issue(raw_issue(key, assignee, [
        history(start, 'To Do', 'In Progress'),
        history(end, 'In Progress', 'Done'),
    ], **kwargs))


class TestAllocateScenarios(unittest.TestCase):
    def test_single_issue_end_to_end(self):
        team = Team('TEST', ['Alice'])
        issue = done_between('TEST-1', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000')
        rows = allocate(team, [issue], {}, sprint='Sprint 1', now=NOW)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].to_record(), {'sprint': 'Sprint 1', 'issueKey': 'TEST-1', 'title': 'Work on TEST-1', 'Alice': '100.00%'})

    def test_still_open_issue_uses_now(self):
        team = Team('TEST', ['Alice'])
        issue = normalize_issue(raw_issue('TEST-1', 'Alice', [history('2024-03-04T09:00:00.000+0000', 'To Do', 'In Progress')], status='In Progress'))
        now = datetime(2024, 3, 4, 11, 0, tzinfo=timezone.utc)
        summary = allocate_with_summary(team, [issue], None, sprint='S', now=now)
        self.assertEqual(summary.issue_hours['TEST-1'], 2.0)
        self.assertEqual(summary.rows[0].allocations['Alice'], '100.00%')

    def test_naive_now_is_treated_as_utc(self):
        team = Team('TEST', ['Alice'])
        issue = normalize_issue(raw_issue('TEST-1', 'Alice', [history('2024-03-04T09:00:00.000+0000', 'To Do', 'In Progress')], status='In Progress'))
        summary = allocate_with_summary(team, [issue], {}, now=datetime(2024, 3, 4, 11, 0))
        self.assertEqual(summary.issue_hours['TEST-1'], 2.0)
        self.assertEqual(summary.rows[0].allocations['Alice'], '100.00%')

    def test_manual_override(self):
        team = Team('TEST', ['Alice'])
        issue = done_between('TEST-1', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000')
        summary = allocate_with_summary(team, [issue], {'TEST-1': 5}, now=NOW)
        self.assertEqual(summary.issue_hours['TEST-1'], 5.0)
        self.assertEqual(summary.totals['Alice'], 5.0)

    def test_percentages_split_by_contributor(self):
        team = Team('TEST', ['Alice', 'Bob'])
        issues = [
            done_between('TEST-1', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000'),
            done_between('TEST-2', 'Bob', '2024-03-04T09:00:00.000+0000', '2024-03-04T12:00:00.000+0000'),
            done_between('TEST-3', 'Alice', '2024-03-05T09:00:00.000+0000', '2024-03-05T11:00:00.000+0000'),
        ]
        summary = allocate_with_summary(team, issues, {}, sprint='S', now=NOW)
        self.assertEqual([r.issue_key for r in summary.rows], ['TEST-1', 'TEST-2', 'TEST-3'])
        self.assertEqual(summary.rows[0].allocations, {'Alice': '80.00%', 'Bob': ''})
        self.assertEqual(summary.rows[1].allocations, {'Alice': '', 'Bob': '100.00%'})
        self.assertEqual(summary.rows[2].allocations, {'Alice': '20.00%', 'Bob': ''})
        self.assertEqual(summary.totals, {'Alice': 10.0, 'Bob': 3.0})

    def test_totals_equal_sum_of_issue_hours(self):
        team = Team('TEST', ['Alice', 'Bob', 'Carol'])
        issues = [
            done_between('TEST-1', 'Alice', '2024-03-04T09:30:00.000+0000', '2024-03-05T14:00:00.000+0000'),
            done_between('TEST-2', 'Alice', '2024-03-01T15:00:00.000+0000', '2024-03-04T10:00:00.000+0000'),
            done_between('TEST-3', 'Bob', '2024-03-06T09:00:00.000+0000', '2024-03-06T09:45:00.000+0000'),
        ]
        summary = allocate_with_summary(team, issues, {'TEST-3': 1.25}, now=NOW)
        for member in team.members:
            member_hours = sum(summary.issue_hours[r.issue_key] for r in summary.rows if r.assignee == member)
            self.assertAlmostEqual(member_hours, summary.totals[member])
        self.assertEqual(summary.totals['Carol'], 0.0)
        for r in summary.rows:
            expected = summary.issue_hours[r.issue_key] / summary.totals[r.assignee] * 100
            self.assertEqual(r.allocations[r.assignee], f"{expected:.2f}%")

    def test_zero_total_gives_zero_percent(self):
        team = Team('TEST', ['Alice'])
        # worked only on a Saturday
        issue = done_between('TEST-1', 'Alice', '2024-03-02T09:00:00.000+0000', '2024-03-02T17:00:00.000+0000')
        rows = allocate(team, [issue], None, now=NOW)
        self.assertEqual(rows[0].allocations['Alice'], '0.00%')

    def test_deterministic_for_fixed_now(self):
        team = Team('TEST', ['Alice'])
        issues = [
            normalize_issue(raw_issue('TEST-1', 'Alice', [history('2024-03-04T09:00:00.000+0000', 'To Do', 'In Progress')])),
            done_between('TEST-2', 'Alice', '2024-03-05T09:00:00.000+0000', '2024-03-05T17:00:00.000+0000'),
        ]
        first = [r.to_record(detailed=True) for r in allocate(team, issues, {}, sprint='S', now=NOW)]
        second = [r.to_record(detailed=True) for r in allocate(team, issues, {}, sprint='S', now=NOW)]
        self.assertEqual(first, second)


class TestAllocateFiltering(unittest.TestCase):
    def test_unrecognized_assignee_dropped(self):
        team = Team('TEST', ['Alice'])
        issues = [
            done_between('TEST-1', 'Mallory', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000'),
            done_between('TEST-2', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000'),
            normalize_issue(raw_issue('TEST-3', None, [history('2024-03-04T09:00:00.000+0000', 'To Do', 'In Progress')])),
        ]
        summary = allocate_with_summary(team, issues, {}, now=NOW)
        self.assertEqual([r.issue_key for r in summary.rows], ['TEST-2'])
        self.assertEqual(summary.dropped[DROP_NOT_TEAM_MEMBER], 2)
        self.assertNotIn('Mallory', summary.totals)

    def test_display_name_must_match_exactly(self):
        team = Team('FN', ['Hélio Medeiros'])
        issue = done_between('FN-1', 'Helio Medeiros', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000')
        self.assertFalse(is_team_member(team, issue))
        self.assertEqual(allocate(team, [issue], {}, now=NOW), [])

    def test_issue_without_interval_dropped(self):
        team = Team('TEST', ['Alice'])
        issue = normalize_issue(raw_issue('TEST-1', 'Alice', [history('2024-03-04T09:00:00.000+0000', 'To Do', 'Done')]))
        summary = allocate_with_summary(team, [issue], {'TEST-1': 4}, now=NOW)
        self.assertEqual(summary.rows, [])
        self.assertEqual(summary.dropped[DROP_NO_INTERVAL], 1)
        self.assertEqual(summary.totals, {'Alice': 0.0})

    def test_excluded_issue_types(self):
        team = Team('TEST', ['Alice'])
        issues = [
            done_between('TEST-1', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000'),
            done_between('TEST-2', 'Alice', '2024-03-05T09:00:00.000+0000', '2024-03-05T17:00:00.000+0000', issue_type='Sub-task'),
        ]
        summary = allocate_with_summary(team, issues, {}, now=NOW, exclude_issue_types=['Sub-task'])
        self.assertEqual([r.issue_key for r in summary.rows], ['TEST-1'])
        self.assertEqual(summary.rows[0].allocations['Alice'], '100.00%')
        self.assertEqual(summary.dropped[DROP_EXCLUDED_TYPE], 1)

        # nothing is excluded by default
        self.assertEqual(len(allocate(team, issues, {}, now=NOW)), 2)


class TestRowDetails(unittest.TestCase):
    def test_detail_columns(self):
        team = Team('TEST', ['Alice'])
        issues = [
            done_between('TEST-1', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-05T10:00:00.000+0000'),
            normalize_issue(raw_issue('TEST-2', 'Alice', [history('2024-03-06T09:00:00.000+0000', 'To Do', 'In Progress')], status='In Progress')),
        ]
        rows = allocate(team, issues, {}, sprint='S', now=NOW)
        done, open_ = rows[0].to_record(detailed=True), rows[1].to_record(detailed=True)
        self.assertEqual(done['dateStarted'], '2024-03-04')
        self.assertEqual(done['dateCompleted'], '2024-03-05')
        self.assertEqual(done['workingHours'], 9.0)
        self.assertEqual(done['issueType'], 'Story')
        self.assertEqual(open_['status'], 'In Progress')
        self.assertEqual(open_['dateCompleted'], '')
        self.assertNotIn('workingHours', rows[0].to_record())


if __name__ == '__main__':
    unittest.main()
