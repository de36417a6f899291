import logging

from transfer_queue.engines.upload import CHUNK_SIZE
from transfer_queue.settings import TransferSettings, load_settings, save_settings


class TestTransferSettings:

    def test_defaults_when_empty(self, ini_settings):
        settings = load_settings(ini_settings)

        assert settings == TransferSettings()
        assert settings.chunk_size == CHUNK_SIZE
        assert settings.superuser == 'try'

    def test_round_trip(self, ini_settings):
        save_settings(TransferSettings(chunk_size=4096, superuser=None, batch_size=10,
                                       ssh_port=2222, log_dir='/var/log/tq'), ini_settings)

        loaded = load_settings(ini_settings)

        assert loaded == TransferSettings(chunk_size=4096, superuser=None, batch_size=10,
                                          ssh_port=2222, log_dir='/var/log/tq')

    def test_malformed_values_fall_back(self, ini_settings, caplog):
        ini_settings.setValue("transfer/chunk_size", "lots")
        ini_settings.setValue("transfer/batch_size", "0")
        ini_settings.setValue("transfer/superuser", "always")

        with caplog.at_level(logging.WARNING, logger="transfer_queue.settings"):
            settings = load_settings(ini_settings)

        assert settings.chunk_size == CHUNK_SIZE
        assert settings.batch_size == TransferSettings().batch_size
        assert settings.superuser == 'try'
        assert "transfer/chunk_size" in caplog.text
        assert "always" in caplog.text

    def test_require_mode(self, ini_settings):
        ini_settings.setValue("transfer/superuser", "require")

        assert load_settings(ini_settings).superuser == 'require'
