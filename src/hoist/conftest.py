import hashlib
from typing import Dict, List, Optional, Set

import pytest
from attrs import define, field

from hoist.core.build import BuildSpec, BuiltImage
from hoist.core.config import AppConfig, Config, ProjectConfig, RegistryConfig, RetryConfig
from hoist.core.context import Context
from hoist.core.credential import Credential
from hoist.core.engine import Engine, PushResult
from hoist.core.errors import BuildFailure
from hoist.core.image import ImageReference
from hoist.core.lifecycle import LifecycleStore, StoredImage
from hoist.core.registry import Registry

ECR_HOST = "123456789012.dkr.ecr.us-east-1.amazonaws.com"


class FakeEngine(Engine):
    """Engine keeping images in memory. Pushed references land in `remote`."""

    def __init__(self, remote: Set[str]):
        self.remote = remote
        self.images: Dict[str, str] = {}
        self.builds: List[BuildSpec] = []
        self.pushes: List[tuple] = []
        self.push_errors: Dict[str, List[Exception]] = {}

    @classmethod
    def spec_name(cls) -> str:
        return "fake"

    def build(self, spec: BuildSpec) -> BuiltImage:
        self.builds.append(spec)

        content = repr(
            (
                spec.dockerfile_path.read_bytes(),
                sorted(spec.build_args.items()),
                sorted(spec.labels.items()),
            )
        )
        image_id = "sha256:" + hashlib.sha256(content.encode("utf-8")).hexdigest()
        self.images[str(spec.target)] = image_id

        return BuiltImage(reference=spec.target, image_id=image_id, tags=[spec.target])

    def tag(self, source: ImageReference, target: ImageReference):
        if str(source) not in self.images:
            raise BuildFailure(f"image {source} does not exist")

        self.images[str(target)] = self.images[str(source)]

    def inspect(self, ref: ImageReference) -> Optional[str]:
        return self.images.get(str(ref))

    def push(self, ref: ImageReference, credential: Credential) -> PushResult:
        self.pushes.append((ref, credential))

        errors = self.push_errors.get(ref.registry)
        if errors:
            raise errors.pop(0)

        self.remote.add(str(ref))

        return PushResult(reference=ref, digest=self.images[str(ref)])


class InMemoryLifecycleStore(LifecycleStore):
    """Lifecycle store keeping policies and images in memory."""

    def __init__(self):
        self.policies: Dict[str, str] = {}
        self.images: Dict[str, List[StoredImage]] = {}
        self.puts = 0

    def get_policy(self, repository: str) -> Optional[str]:
        return self.policies.get(repository)

    def put_policy(self, repository: str, text: str):
        self.puts += 1
        self.policies[repository] = text

    def list_images(self, repository: str) -> List[StoredImage]:
        return list(self.images.get(repository, []))


@define(frozen=True, kw_only=True)
class FakeRegistry(Registry):
    """Registry whose stored tags are shared with a `FakeEngine`."""

    hostname: str
    remote: Set[str] = field(factory=set, eq=False, repr=False)
    issued: List[Credential] = field(factory=list, eq=False, repr=False)
    store: InMemoryLifecycleStore = field(factory=InMemoryLifecycleStore, eq=False, repr=False)
    lookups: List[Credential] = field(factory=list, eq=False, repr=False)
    lookup_errors: List[Exception] = field(factory=list, eq=False, repr=False)

    @classmethod
    def spec_name(cls) -> str:
        return "fake"

    def host(self) -> str:
        return self.hostname

    def authenticate(self) -> Credential:
        credential = Credential(
            registry=self.name,
            username="user",
            secret=f"token-{len(self.issued) + 1}",
        )
        self.issued.append(credential)

        return credential

    def tag_exists(self, ref: ImageReference, credential: Credential) -> bool:
        self.lookups.append(credential)
        if self.lookup_errors:
            raise self.lookup_errors.pop(0)

        return str(ref) in self.remote

    def lifecycle_store(self) -> InMemoryLifecycleStore:
        return self.store


@pytest.fixture
def hoist_context(tmp_path) -> Context:
    app_path = tmp_path / "apps" / "myapp"
    app_path.mkdir(parents=True)
    app_path.joinpath("Dockerfile").write_text("FROM scratch\nCOPY . /app\n", encoding="utf-8")

    config = Config(
        project=ProjectConfig(repo_path=str(tmp_path)),
        engine="fake",
        retry=RetryConfig(attempts=3, base_delay=0.0),
        registries={
            "ecr": RegistryConfig(type="fake"),
            "hub": RegistryConfig(type="fake"),
        },
        apps={
            "myapp": AppConfig(
                path="apps/myapp",
                repository="myapp",
                tags=["latest"],
                registries=["ecr"],
                build_args={"NODE_ENV": "production"},
            ),
        },
    )

    remote: Set[str] = set()

    return Context(
        config=config,
        revision="abc123",
        engine=FakeEngine(remote),
        registries={
            "ecr": FakeRegistry(name="ecr", hostname=ECR_HOST, remote=remote),
            "hub": FakeRegistry(name="hub", hostname="me", remote=remote),
        },
        commit_time=1700000000,
    )
