from __future__ import annotations

from typing import Generic, TypeVar

from provisor._internal.contracts import (
    class_contracts,
    contract_scope,
    default_contracts,
    explicit_contracts,
    is_contract,
)
from provisor._internal.type_keys import ServiceKey
from provisor.markers import contract, contracts_provided, singleton
from provisor.scope import Scope

T = TypeVar("T")


@contract
class Repository(Generic[T]):
    pass


@contract
class Closeable:
    pass


class Base:
    pass


class User:
    pass


class UserRepository(Base, Repository[User], Closeable):
    pass


class AuditedUserRepository(UserRepository):
    pass


class OpenRepository(Repository[T]):
    pass


@contracts_provided(Closeable)
class ClosingOnly(Closeable):
    pass


@singleton
@contract
class Cache:
    pass


def test_contract_marker_is_not_inherited() -> None:
    assert is_contract(Closeable)
    assert not is_contract(UserRepository)


def test_default_contracts_include_contract_supertypes_in_mro_order() -> None:
    contracts = default_contracts(ServiceKey(UserRepository))

    assert contracts == (
        ServiceKey(UserRepository),
        ServiceKey.of(Repository[User]),
        ServiceKey(Closeable),
    )


def test_default_contracts_of_subclass_reach_inherited_contracts() -> None:
    contracts = default_contracts(ServiceKey(AuditedUserRepository))

    assert ServiceKey.of(Repository[User]) in contracts
    assert ServiceKey(UserRepository) not in contracts


def test_unbound_generic_contract_falls_back_to_raw_key() -> None:
    contracts = default_contracts(ServiceKey(OpenRepository))

    assert ServiceKey(Repository) in contracts


def test_parameterized_key_binds_generic_contract() -> None:
    contracts = default_contracts(ServiceKey.of(OpenRepository[int]))

    assert ServiceKey.of(Repository[int]) in contracts


def test_explicit_contracts_resolve_type_variables() -> None:
    contracts = explicit_contracts((Repository[T], Closeable, Closeable), bindings={T: User})

    assert contracts == (ServiceKey.of(Repository[User]), ServiceKey(Closeable))


def test_class_contracts_honor_contracts_provided() -> None:
    assert class_contracts(ServiceKey(ClosingOnly)) == (ServiceKey(Closeable),)


def test_contract_scope_reads_contract_class_scope() -> None:
    assert contract_scope((ServiceKey(User), ServiceKey(Cache))) is Scope.SINGLETON
    assert contract_scope((ServiceKey(User),)) is None
