"""Organization repository."""

from datacop_api.db.models import Organization
from datacop_api.db.repo_base import VersionedRepository


class OrganizationRepository(VersionedRepository[Organization]):
    model = Organization
