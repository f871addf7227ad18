from datetime import datetime
from enum import IntEnum
from typing import ClassVar, Dict, Optional

from pydantic import BaseModel, Field, model_serializer


class UserClass(IntEnum):
    """Tariff tier of a project, inherited by its users"""
    NA = 0
    UC1 = 1
    UC2 = 2
    UC3 = 3
    UC4 = 4
    UC5 = 5
    UC6 = 6


# ---------------------------------------------------------------------------
# Entities read by the engine
# ---------------------------------------------------------------------------

class Project(BaseModel):
    id: int
    name: str
    openstack_id: str = ""
    user_class: UserClass = UserClass.NA


class User(BaseModel):
    id: int
    name: str
    openstack_id: str = ""
    project: int
    project_name: str
    role: int = 1
    is_staff: bool = False
    is_active: bool = True

    MASTER_ROLE: ClassVar[int] = 2

    @property
    def is_master(self) -> bool:
        return self.role == self.MASTER_ROLE


class Flavor(BaseModel):
    id: int
    name: str
    openstack_id: str = ""
    weight: int = 0
    group: Optional[int] = None
    group_name: Optional[str] = None


class FlavorPrice(BaseModel):
    id: int
    flavor: int
    flavor_name: str
    user_class: UserClass
    unit_price: float
    start_time: datetime


class ServerState(BaseModel):
    """One server instance occupying one flavor under one user in [begin, end)"""
    id: int
    begin: datetime
    end: Optional[datetime] = None
    instance_id: str
    instance_name: str
    flavor: int
    flavor_name: str
    status: str
    user: int
    username: str
    project: Optional[int] = None
    project_name: Optional[str] = None


class ProjectBudget(BaseModel):
    id: int
    project: int
    project_name: str
    year: int
    amount: int


class UserBudget(BaseModel):
    id: int
    user: int
    username: str
    year: int
    amount: int


class FlavorQuota(BaseModel):
    id: int
    user: int
    username: str
    quota: int
    flavor_group: int
    flavor_group_name: str


# ---------------------------------------------------------------------------
# Consumption results (seconds of use per flavor)
# ---------------------------------------------------------------------------

ServerConsumptionFlavors = Dict[str, float]


class ServerConsumptionUser(BaseModel):
    total: ServerConsumptionFlavors = Field(default_factory=dict)
    servers: Dict[str, ServerConsumptionFlavors] = Field(default_factory=dict)


class ServerConsumptionProject(BaseModel):
    total: ServerConsumptionFlavors = Field(default_factory=dict)
    users: Dict[str, ServerConsumptionUser] = Field(default_factory=dict)


class ServerConsumptionAll(BaseModel):
    total: ServerConsumptionFlavors = Field(default_factory=dict)
    projects: Dict[str, ServerConsumptionProject] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Cost results
#
# On the wire the variants are untagged: a client tells Normal ({total})
# from Detail ({total, flavors, ...}) by the keys present.  Internally the
# class is the tag; ``variant`` is a ClassVar and never serialized.
# ---------------------------------------------------------------------------

class ServerCostSimple(BaseModel):
    variant: ClassVar[str] = "normal"
    total: float = 0.0


class ServerCostServer(BaseModel):
    variant: ClassVar[str] = "detail"
    total: float = 0.0
    flavors: Dict[str, float] = Field(default_factory=dict)


class ServerCostUser(BaseModel):
    variant: ClassVar[str] = "detail"
    total: float = 0.0
    flavors: Dict[str, float] = Field(default_factory=dict)
    servers: Dict[str, ServerCostServer] = Field(default_factory=dict)


class ServerCostProject(BaseModel):
    variant: ClassVar[str] = "detail"
    total: float = 0.0
    flavors: Dict[str, float] = Field(default_factory=dict)
    users: Dict[str, ServerCostUser] = Field(default_factory=dict)


class ServerCostAll(BaseModel):
    variant: ClassVar[str] = "detail"
    total: float = 0.0
    flavors: Dict[str, float] = Field(default_factory=dict)
    projects: Dict[str, ServerCostProject] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Budget over tree
# ---------------------------------------------------------------------------

class BudgetOverTreeServer(BaseModel):
    total: float = 0.0
    flavors: Dict[str, float] = Field(default_factory=dict)


class BudgetOverTreeUser(BaseModel):
    cost: float = 0.0
    budget_id: Optional[int] = None
    budget: Optional[int] = None
    over: bool = False
    servers: Dict[str, BudgetOverTreeServer] = Field(default_factory=dict)
    flavors: Dict[str, float] = Field(default_factory=dict)


def _drop_absent(data: dict, keys) -> dict:
    for key in keys:
        if data.get(key) is None:
            data.pop(key, None)
    return data


class BudgetOverTreeProject(BaseModel):
    cost: float = 0.0
    budget_id: Optional[int] = None
    budget: Optional[int] = None
    over: bool = False
    users: Dict[str, BudgetOverTreeUser] = Field(default_factory=dict)
    flavors: Optional[Dict[str, float]] = None

    @model_serializer(mode="wrap")
    def _serialize(self, handler):
        return _drop_absent(handler(self), ("flavors",))


class BudgetOverTree(BaseModel):
    cost: Optional[float] = None
    projects: Dict[str, BudgetOverTreeProject] = Field(default_factory=dict)
    flavors: Optional[Dict[str, float]] = None

    @model_serializer(mode="wrap")
    def _serialize(self, handler):
        return _drop_absent(handler(self), ("cost", "flavors"))


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ProjectBudgetModifyData(BaseModel):
    id: int
    amount: Optional[int] = Field(None, ge=0)
    force: bool = False


class UserBudgetModifyData(BaseModel):
    id: int
    amount: Optional[int] = Field(None, ge=0)
    force: bool = False


# ---------------------------------------------------------------------------
# Usage and quota
# ---------------------------------------------------------------------------

class FlavorGroupUsageSimple(BaseModel):
    user_id: int
    user_name: str
    flavorgroup_id: int
    flavorgroup_name: str
    usage: int


class FlavorGroupUsageAggregate(BaseModel):
    flavorgroup_id: int
    flavorgroup_name: str
    usage: int


class FlavorQuotaCheck(BaseModel):
    underquota: bool
