class FleetCatalogException(Exception):
    """Base exception for all fleet catalog errors."""
    pass

class NotConnectedException(FleetCatalogException):
    """Raised when a sync pass is started before the provider is connected."""
    def __init__(self, provider_name: str):
        self.provider_name = provider_name
        super().__init__(f"FleetEntityProvider[{provider_name}] is not connected")

class ConfigurationException(FleetCatalogException):
    """Raised when the provider configuration is missing or invalid."""
    pass

class UpstreamRequestException(FleetCatalogException):
    """Raised when a remote API answers with a non-success status."""
    def __init__(self, url: str, status: int, body: str = ""):
        self.url = url
        self.status = status
        super().__init__(f"{status} from {url}: {body[:200]}")

class DescriptorFileException(FleetCatalogException):
    """Raised when a pre-fetched fleet.yaml payload cannot be parsed."""
    pass

class CatalogStoreException(FleetCatalogException):
    """Raised when writing the entity snapshot fails."""
    pass
