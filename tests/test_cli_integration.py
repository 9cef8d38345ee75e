import json
from pathlib import Path

from cli import main

ROSTER = """
TEST:
  - Alice
  - Bob
"""


def _history(created, frm, to):
    return {'created': created, 'items': [{'field': 'status', 'fromString': frm, 'toString': to}]}


def _issue(key, assignee, start, end):
    return {
        'key': key,
        'fields': {'summary': f"Work on {key}", 'assignee': {'displayName': assignee}, 'issuetype': {'name': 'Story'}, 'status': {'name': 'Done'}},
        'changelog': {'histories': [_history(start, 'To Do', 'In Progress'), _history(end, 'In Progress', 'Done')]},
    }


def _write_inputs(tmp_path):
    teams = tmp_path / 'teams.yaml'
    teams.write_text(ROSTER, encoding='utf-8')
    issues = tmp_path / 'issues.json'
    issues.write_text(json.dumps({'issues': [
        _issue('TEST-1', 'Alice', '2024-03-04T09:00:00.000+0000', '2024-03-04T17:00:00.000+0000'),
        _issue('TEST-2', 'Alice', '2024-03-05T09:00:00.000+0000', '2024-03-05T11:00:00.000+0000'),
        _issue('TEST-3', 'Mallory', '2024-03-05T09:00:00.000+0000', '2024-03-05T11:00:00.000+0000'),
    ]}), encoding='utf-8')
    return ['-p', 'TEST', '-s', 'Sprint 1', '--teams-file', str(teams), '--issues-file', str(issues), '--now', '2024-03-08T12:00:00Z']


def test_cli_csv_to_stdout(tmp_path, capsys):
    rc = main(_write_inputs(tmp_path))
    assert rc == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        'sprint,issueKey,title,Alice,Bob',
        'Sprint 1,TEST-1,Work on TEST-1,80.00%,',
        'Sprint 1,TEST-2,Work on TEST-2,20.00%,',
    ]


def test_cli_override_and_out_file(tmp_path, capsys):
    out_file = tmp_path / 'report.json'
    argv = _write_inputs(tmp_path) + ['-o', '{"TEST-2": 8}', '--output', 'json', '--out-file', str(out_file), '--detailed']
    assert main(argv) == 0
    data = json.loads(Path(out_file).read_text(encoding='utf-8'))
    assert [r['Alice'] for r in data] == ['50.00%', '50.00%']
    assert data[1]['workingHours'] == 8.0
    assert 'Wrote report to' in capsys.readouterr().out


def test_cli_unknown_project_fails(tmp_path, capsys):
    argv = _write_inputs(tmp_path)
    argv[1] = 'NOPE'
    assert main(argv) == 1
    err = capsys.readouterr().err
    assert 'project NOPE not found in team roster' in err


def test_cli_malformed_override_fails(tmp_path, capsys):
    assert main(_write_inputs(tmp_path) + ['-o', '{"TEST-1": }']) == 1
    assert 'manual adjustments' in capsys.readouterr().err


def test_cli_missing_jira_credentials(tmp_path, monkeypatch, capsys):
    for name in ('JIRA_BASE_URL', 'JIRA_EMAIL', 'JIRA_TOKEN'):
        monkeypatch.delenv(name, raising=False)
    argv = [a for a in _write_inputs(tmp_path)]
    idx = argv.index('--issues-file')
    del argv[idx:idx + 2]
    assert main(argv) == 1
    assert 'JIRA_BASE_URL' in capsys.readouterr().err
