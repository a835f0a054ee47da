"""
Tests for the invoicex command-line interface
"""

import re

import pytest
import yaml
from click.testing import CliRunner

from invoicex.cli import cli

from conftest import PDF_BYTES


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.dump({
        'database': {'type': 'sqlite', 'path': str(tmp_path / 'cli.db')},
        'storage': {'type': 'filesystem', 'path': str(tmp_path / 'files')},
        'worker': {'mode': 'separate'},
        'logging': {'level': 'WARNING'},
    }))
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


def _invoke(runner, config_file, *args):
    result = runner.invoke(cli, ['--config', config_file, *args], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    return result.output


class TestCli:
    """Tests for the CLI commands"""

    def test_init(self, runner, config_file):
        """Test database initialization"""
        output = _invoke(runner, config_file, 'init')

        assert 'InvoiceX initialized' in output
        assert 'Worker:   separate' in output

    def test_upload_submit_status_stats(self, runner, config_file, tmp_path):
        """Test the upload to queued flow"""
        pdf = tmp_path / 'invoice.pdf'
        pdf.write_bytes(PDF_BYTES)
        _invoke(runner, config_file, 'init')

        output = _invoke(runner, config_file, 'upload', str(pdf), '--owner', 'user_1')
        document_id = re.search(r'(doc_\w+)', output).group(1)
        batch_id = re.search(r'Batch: (bat_\w+)', output).group(1)

        output = _invoke(runner, config_file, 'submit', batch_id, '--owner', 'user_1')
        assert 'queued' in output
        assert 'job=ope_' in output
        assert 'Batch status: processing' in output

        output = _invoke(runner, config_file, 'status', document_id, '--owner', 'user_1')
        assert document_id in output
        assert 'queued' in output

        output = _invoke(runner, config_file, 'stats', batch_id, '--owner', 'user_1')
        assert 'Queued:       1' in output
        assert 'Total:        1' in output

    def test_unknown_batch(self, runner, config_file):
        """Test errors are reported without a traceback"""
        _invoke(runner, config_file, 'init')
        result = runner.invoke(cli, ['--config', config_file, 'submit', 'bat_missing', '--owner', 'user_1'])

        assert result.exit_code != 0
        assert 'Batch not found' in result.output

    def test_worker_disabled(self, runner, tmp_path):
        """Test the worker refuses to run in disabled mode"""
        path = tmp_path / 'disabled.yaml'
        path.write_text(yaml.dump({
            'database': {'type': 'sqlite', 'path': str(tmp_path / 'cli.db')},
            'storage': {'type': 'filesystem', 'path': str(tmp_path / 'files')},
            'worker': {'mode': 'disabled'},
        }))

        result = runner.invoke(cli, ['--config', str(path), 'worker'])

        assert result.exit_code == 0
        assert 'disabled' in result.output
