"""WebDriver engine manifest."""

from e2e_harness.engines.manifest import EngineManifest
from e2e_harness.engines.webdriver.config import WebDriverConfig
from e2e_harness.engines.webdriver.engine import WebDriverEngine

webdriver_manifest = EngineManifest(
    config_cls=WebDriverConfig,
    engine_factory=WebDriverEngine.from_manifest,
)
