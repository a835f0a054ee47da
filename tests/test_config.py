"""
Tests for configuration loading and the facade wiring
"""

import pytest
import yaml

from invoicex.config.invoicex_config import InvoiceXConfig
from invoicex.core import (
    InvoiceX,
    provider_settings_from_config,
    worker_config_from_config,
    worker_mode_from_config,
)
from invoicex.models.invoice import WorkerMode


class TestInvoiceXConfig:
    """Tests for InvoiceXConfig"""

    def test_defaults(self):
        """Test the packaged defaults"""
        config = InvoiceXConfig()
        assert config.get('worker.mode') == 'separate'
        assert config.get('worker.concurrency') == 5
        assert config.get('llm.provider') == 'openai'
        assert config.get('missing.key', 'fallback') == 'fallback'

    def test_load_merges_file(self, tmp_path):
        """Test a user file overrides only what it sets"""
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.dump({'worker': {'mode': 'disabled'}, 'llm': {'model': 'gpt-4o'}}))

        config = InvoiceXConfig.load(str(path))

        assert config.get('worker.mode') == 'disabled'
        assert config.get('worker.concurrency') == 5
        assert config.get('llm.model') == 'gpt-4o'
        assert config.get('llm.provider') == 'openai'

    def test_apply_env(self):
        """Test environment overrides"""
        config = InvoiceXConfig().apply_env({
            'WORKER_MODE': 'embedded',
            'WORKER_CONCURRENCY': '8',
            'DATABASE_URL': 'sqlite:///env.db',
            'AI_PROVIDER': 'deepseek',
            'AI_API_KEY': 'sk-env',
        })

        assert config.get('worker.mode') == 'embedded'
        assert config.get('worker.concurrency') == 8
        assert config.get('database.url') == 'sqlite:///env.db'
        assert config.get('llm.provider') == 'deepseek'
        assert config.get('llm.api_key') == 'sk-env'

    def test_apply_env_ignores_invalid_numbers(self):
        """Test unparseable numeric overrides keep the default"""
        config = InvoiceXConfig().apply_env({'WORKER_CONCURRENCY': 'lots'})
        assert config.get('worker.concurrency') == 5

    def test_set_creates_sections(self):
        """Test dot-notation set"""
        config = InvoiceXConfig()
        config.set('queue.database.url', 'sqlite:///queue.db')
        assert config.get('queue.database.url') == 'sqlite:///queue.db'

    def test_section_is_a_copy(self):
        """Test sections can be modified without touching the config"""
        config = InvoiceXConfig()
        section = config.section('worker')
        section['mode'] = 'disabled'
        assert config.get('worker.mode') == 'separate'


class TestFacadeSettings:
    """Tests for resolving explicit settings from configuration"""

    @pytest.mark.parametrize('raw, expected', [
        ('disabled', WorkerMode.DISABLED),
        ('EMBEDDED', WorkerMode.EMBEDDED),
        ('separate', WorkerMode.SEPARATE),
        ('redis', WorkerMode.SEPARATE),
    ])
    def test_worker_mode(self, raw, expected):
        """Test any value other than disabled uses the queue"""
        config = InvoiceXConfig({'worker': {'mode': raw}})
        assert worker_mode_from_config(config) == expected

    def test_worker_config(self):
        """Test worker settings mapping"""
        config = InvoiceXConfig({'worker': {'concurrency': 2, 'max_jobs': 4, 'duration_ms': 500}})
        worker = worker_config_from_config(config)

        assert worker.max_concurrent == 2
        assert worker.rate_limit.max_jobs == 4
        assert worker.rate_limit.duration_ms == 500
        assert worker.max_attempts == 3

    def test_provider_settings(self):
        """Test empty values become None"""
        settings = provider_settings_from_config(InvoiceXConfig({'llm': {'api_key': ''}}))
        assert settings.provider == 'openai'
        assert settings.api_key is None
        assert settings.model == 'gpt-4o-mini'

    def test_from_config(self, tmp_path):
        """Test the facade wires a working pipeline"""
        config = InvoiceXConfig({
            'database': {'type': 'sqlite', 'path': str(tmp_path / 'app.db')},
            'storage': {'type': 'filesystem', 'path': str(tmp_path / 'files')},
            'worker': {'mode': 'disabled'},
        })

        app = InvoiceX.from_config(config)
        try:
            app.initialize()
            assert app.mode == WorkerMode.DISABLED
            assert app.queue_db is app.db
            batch = app.batches.create_batch('user_1', 'Wired')
            assert app.batches.get_batch(batch.id, 'user_1').name == 'Wired'
        finally:
            app.close()
