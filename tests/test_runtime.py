import unittest

from siesa_bridge.config import SyncSettings
from siesa_bridge.domain.gateways import ErpInventoryGateway
from siesa_bridge.runtime import (
    build_erp_gateway,
    build_flat_file_exporter,
    build_storefront_gateway,
    load_factory,
)
from siesa_bridge.simulator import SimulatedErp, SimulatedFlatFileExporter, SimulatedStorefront


def simulated_erp_factory(config):
    return SimulatedErp()


def not_a_gateway_factory(config):
    return object()


class RuntimeFactoriesTest(unittest.TestCase):
    def test_mock_mode_builds_simulators(self) -> None:
        config = {"INTEGRATION_MODE": "mock", "SIESA_FILE_PREFIX": "PED_", "SIESA_FLAT_FILES_PATH": "/tmp/pedidos"}

        self.assertIsInstance(build_storefront_gateway(config), SimulatedStorefront)
        self.assertIsInstance(build_erp_gateway(config), SimulatedErp)
        exporter = build_flat_file_exporter(config)
        self.assertIsInstance(exporter, SimulatedFlatFileExporter)
        self.assertEqual(exporter.file_prefix, "PED_")
        self.assertEqual(exporter.flat_files_path, "/tmp/pedidos")

    def test_live_mode_uses_dotted_factory(self) -> None:
        config = {"INTEGRATION_MODE": "live", "ERP_GATEWAY_FACTORY": "tests.test_runtime:simulated_erp_factory"}
        self.assertIsInstance(build_erp_gateway(config), ErpInventoryGateway)

        config["ERP_GATEWAY_FACTORY"] = "tests.test_runtime.simulated_erp_factory"
        self.assertIsInstance(build_erp_gateway(config), SimulatedErp)

    def test_live_mode_requires_factory(self) -> None:
        with self.assertRaises(RuntimeError):
            build_storefront_gateway({"INTEGRATION_MODE": "live"})

    def test_factory_must_build_expected_gateway(self) -> None:
        config = {"INTEGRATION_MODE": "live", "ERP_GATEWAY_FACTORY": "tests.test_runtime:not_a_gateway_factory"}
        with self.assertRaises(RuntimeError):
            build_erp_gateway(config)

    def test_invalid_dotted_path(self) -> None:
        with self.assertRaises(RuntimeError):
            load_factory("sin_punto")


class SyncSettingsTest(unittest.TestCase):
    def test_values_are_clamped(self) -> None:
        settings = SyncSettings.from_config(
            {
                "ORDER_EXPORT_MAX_ATTEMPTS": "0",
                "INVENTORY_SYNC_CONCURRENCY": 500,
                "ORDER_STALLED_MINUTES": "abc",
                "SHOPIFY_INVENTORY_LOCATION_ID": "  ",
            }
        )

        self.assertEqual(settings.max_attempts, 1)
        self.assertEqual(settings.sync_concurrency, 32)
        self.assertEqual(settings.stalled_minutes, 30)
        self.assertIsNone(settings.inventory_location_id)
        self.assertEqual(settings.file_prefix, "PEDIDO_")


if __name__ == "__main__":
    unittest.main()
