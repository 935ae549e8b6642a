from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    # Upstream payloads are camelCase and carry fields we don't keep.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Hair(_WireModel):
    color: str | None = None
    type: str | None = None


class Coordinates(_WireModel):
    lat: float | None = None
    lng: float | None = None


class Address(_WireModel):
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    coordinates: Coordinates | None = None


class Company(_WireModel):
    name: str | None = None
    department: str | None = None
    title: str | None = None


class Agent(_WireModel):
    id: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    username: str = ""
    image: str | None = None
    age: int = 0
    gender: str = ""
    birth_date: str = ""
    height: float | None = None
    weight: float | None = None
    eye_color: str | None = None
    hair: Hair | None = None
    address: Address | None = None
    company: Company | None = None
    university: str | None = None
    cached_at: int = 0  # epoch millis of the last local write

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Reactions(_WireModel):
    likes: int | None = None
    loves: int | None = None
    haha: int | None = None
    wow: int | None = None
    sad: int | None = None
    angry: int | None = None

    @property
    def total(self) -> int:
        return sum(
            n or 0
            for n in (self.likes, self.loves, self.haha, self.wow, self.sad, self.angry)
        )


class Post(_WireModel):
    id: int
    agent_id: int
    title: str = ""
    body: str = ""
    tags: list[str] | None = None
    reactions: Reactions | None = None
    cached_at: int = 0

    # The upstream calls the author "userId".
    model_config = ConfigDict(
        alias_generator=lambda name: "userId" if name == "agent_id" else to_camel(name),
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def total_reactions(self) -> int:
        return self.reactions.total if self.reactions else 0


class AgentPage(_WireModel):
    users: list[Agent]
    total: int = 0
    skip: int = 0
    limit: int = 0


class PostPage(_WireModel):
    posts: list[Post]
    total: int = 0
    skip: int = 0
    limit: int = 0


class SettingsSnapshot(BaseModel):
    offline_only: bool = False
    auto_refresh_enabled: bool = True
    last_refresh_time: int = 0  # epoch millis, 0 = never
