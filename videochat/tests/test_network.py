"""
Tests for NetworkResolver: upline walks, downline expansion and counts.
"""
import pytest
from datetime import timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.services.network import NetworkResolver, SponsorCycleError


@pytest.mark.asyncio
async def test_upline_levels_start_at_direct_sponsor(test_session: AsyncSession, make_chain):
    payer, sponsors = await make_chain(3)
    resolver = NetworkResolver(test_session)

    chain = await resolver.upward_chain(payer.id, 5)

    assert [level for level, _ in chain] == [1, 2, 3]
    assert [user.id for _, user in chain] == [s.id for s in sponsors]


@pytest.mark.asyncio
async def test_upline_stops_at_max_levels(test_session: AsyncSession, make_chain):
    payer, sponsors = await make_chain(7)
    chain = await NetworkResolver(test_session).upward_chain(payer.id, 5)

    assert len(chain) == 5
    assert chain[-1][1].id == sponsors[4].id


@pytest.mark.asyncio
async def test_upline_is_restartable(test_session: AsyncSession, make_chain):
    payer, _ = await make_chain(2)
    resolver = NetworkResolver(test_session)

    first = [u.id async for _, u in resolver.iter_upline(payer.id, 5)]
    second = [u.id async for _, u in resolver.iter_upline(payer.id, 5)]
    assert first == second


@pytest.mark.asyncio
async def test_upline_of_root_is_empty(test_session: AsyncSession, make_user):
    root = await make_user()
    assert await NetworkResolver(test_session).upward_chain(root.id, 5) == []


@pytest.mark.asyncio
async def test_orphaned_sponsor_reference_ends_chain(test_session: AsyncSession, make_user):
    sponsor = await make_user()
    user = await make_user(sponsor=sponsor)
    sponsor.sponsor_id = 999999  # points at nobody
    await test_session.commit()

    chain = await NetworkResolver(test_session).upward_chain(user.id, 5)
    assert [u.id for _, u in chain] == [sponsor.id]


@pytest.mark.asyncio
async def test_sponsor_cycle_raises_invariant_error(test_session: AsyncSession, make_user):
    a = await make_user()
    b = await make_user(sponsor=a)
    a.sponsor_id = b.id
    await test_session.commit()

    with pytest.raises(SponsorCycleError) as exc:
        await NetworkResolver(test_session).upward_chain(a.id, 5)
    assert exc.value.status_code == 500


@pytest.mark.asyncio
async def test_downward_subtree_groups_by_level(test_session: AsyncSession, make_user):
    root = await make_user()
    a = await make_user(sponsor=root)
    b = await make_user(sponsor=root)
    a1 = await make_user(sponsor=a)
    a2 = await make_user(sponsor=a)
    b1 = await make_user(sponsor=b)
    a1x = await make_user(sponsor=a1)

    levels = await NetworkResolver(test_session).downward_subtree(root.id, 6)

    assert set(levels) == {1, 2, 3}
    assert {u.id for u in levels[1]} == {a.id, b.id}
    assert {u.id for u in levels[2]} == {a1.id, a2.id, b1.id}
    assert [u.id for u in levels[3]] == [a1x.id]


@pytest.mark.asyncio
async def test_downward_subtree_respects_depth(test_session: AsyncSession, make_chain):
    payer, sponsors = await make_chain(4)
    top = sponsors[-1]

    levels = await NetworkResolver(test_session).downward_subtree(top.id, 2)
    assert set(levels) == {1, 2}


@pytest.mark.asyncio
async def test_network_size_matches_subtree(test_session: AsyncSession, make_user):
    root = await make_user()
    children = [await make_user(sponsor=root) for _ in range(3)]
    for child in children[:2]:
        await make_user(sponsor=child)

    resolver = NetworkResolver(test_session)
    levels = await resolver.downward_subtree(root.id, 6)

    assert await resolver.network_size(root.id, 6) == 5
    assert await resolver.network_size(root.id, 6) == sum(len(v) for v in levels.values())
    assert await resolver.network_size(root.id, 1) == 3


@pytest.mark.asyncio
async def test_count_direct_referrals_active_only(test_session: AsyncSession, make_user):
    root = await make_user()
    await make_user(sponsor=root)
    await make_user(sponsor=root, member=False)
    await make_user(sponsor=root, expiry=utcnow() - timedelta(hours=1))

    resolver = NetworkResolver(test_session)
    assert await resolver.count_direct_referrals(root.id) == 3
    assert await resolver.count_direct_referrals(root.id, active_since=utcnow()) == 1


@pytest.mark.asyncio
async def test_build_tree_nests_children(test_session: AsyncSession, make_user):
    root = await make_user()
    a = await make_user(sponsor=root)
    a1 = await make_user(sponsor=a)
    b = await make_user(sponsor=root)

    roots = await NetworkResolver(test_session).build_tree(root.id, 6)

    by_id = {node.user.id: node for node in roots}
    assert set(by_id) == {a.id, b.id}
    assert [child.user.id for child in by_id[a.id].children] == [a1.id]
    assert by_id[a.id].children[0].level == 2
    assert by_id[b.id].children == []
