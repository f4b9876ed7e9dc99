import logging
from typing import List, Optional
from uuid import UUID

from doodlesync.schemas.thread import Doodle, DoodleRecipient
from doodlesync.schemas.user import Friendship, User
from doodlesync.services.gateway import RemoteGateway


logger = logging.getLogger(__name__)


class FriendService:
    """Friends, pending requests and received doodles for one user."""

    def __init__(self, gateway: RemoteGateway, user_id: UUID) -> None:
        self._gateway = gateway
        self.user_id = user_id
        self.friends: List[User] = []
        self.pending_requests: List[Friendship] = []
        self.received_doodles: List[Doodle] = []

    async def load_friends(self) -> List[User]:
        self.friends = await self._gateway.fetch_accepted_friends(self.user_id)
        self.pending_requests = await self._gateway.fetch_pending_requests(self.user_id)
        return list(self.friends)

    async def accept_request(self, friendship: Friendship) -> None:
        await self._gateway.accept_friend_request(friendship.id)
        self._drop_pending(friendship.id)
        requester = await self._gateway.fetch_user(friendship.requester_id)
        if requester is not None:
            self._add_friend(requester)

    async def decline_request(self, friendship: Friendship) -> None:
        await self._gateway.delete_friendship(friendship.id)
        self._drop_pending(friendship.id)

    async def send_request(self, invite_code: str) -> bool:
        code = invite_code.strip()
        if not code:
            return False
        target = await self._gateway.fetch_user_by_invite_code(code)
        if target is None:
            logger.info("friends: no user with invite code %r", code)
            return False
        if target.id == self.user_id:
            return False
        if await self._friendship_with(target.id) is not None:
            return False  # already requested or already friends
        await self._gateway.create_friend_request(self.user_id, target.id)
        return True

    async def remove_friend(self, friend_id: UUID) -> bool:
        friendship = await self._friendship_with(friend_id)
        if friendship is None:
            return False
        await self._gateway.delete_friendship(friendship.id)
        self.friends = [f for f in self.friends if f.id != friend_id]
        return True

    async def load_received_doodles(self) -> List[Doodle]:
        doodles = await self._gateway.fetch_received_doodles(self.user_id)
        self.received_doodles = sorted(doodles, key=lambda d: d.created_at, reverse=True)
        return list(self.received_doodles)

    def find_pending(self, friendship_id: UUID) -> Optional[Friendship]:
        return next((f for f in self.pending_requests if f.id == friendship_id), None)

    # realtime listeners

    async def handle_friend_request(self, friendship: Friendship) -> None:
        if friendship.addressee_id != self.user_id:
            return
        if self.find_pending(friendship.id) is None:
            self.pending_requests.append(friendship)

    async def handle_friend_accepted(self, friendship: Friendship) -> None:
        if friendship.requester_id != self.user_id:
            return
        if any(f.id == friendship.addressee_id for f in self.friends):
            return
        addressee = await self._gateway.fetch_user(friendship.addressee_id)
        if addressee is not None:
            self._add_friend(addressee)

    async def handle_doodle_received(self, recipient: DoodleRecipient) -> None:
        if any(d.id == recipient.doodle_id for d in self.received_doodles):
            return
        doodles = await self._gateway.fetch_doodles([recipient.doodle_id])
        if not doodles:
            return
        # re-check: another event may have added it while the fetch was in flight
        if not any(d.id == recipient.doodle_id for d in self.received_doodles):
            self.received_doodles.insert(0, doodles[0])

    async def _friendship_with(self, other_id: UUID) -> Optional[Friendship]:
        for friendship in await self._gateway.fetch_friendships(self.user_id):
            if other_id in (friendship.requester_id, friendship.addressee_id):
                return friendship
        return None

    def _drop_pending(self, friendship_id: UUID) -> None:
        self.pending_requests = [f for f in self.pending_requests if f.id != friendship_id]

    def _add_friend(self, user: User) -> None:
        if not any(f.id == user.id for f in self.friends):
            self.friends.append(user)
