"""Event router tests: who receives what, and what gets stored."""

import asyncio
import unittest

from tests.support import BrokenStore, GatedStore, SlowOfflineStore, events, make_router, make_store


class RouterTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = make_store()
        self.router = make_router(self.store)

    async def join(self, sid, username):
        self.router.connect(sid)
        return await self.router.dispatch(sid, "user_join", {"username": username})


class TestJoinAndDisconnect(RouterTestCase):

    async def test_user_join_broadcasts_joined_and_user_list(self):
        self.router.connect("b")
        out = await self.join("a", "alice")
        joined, = events(out, "user_joined")
        self.assertEqual(joined.data, {"username": "alice", "id": "a"})
        self.assertEqual(set(joined.to), {"a", "b"})
        user_list, = events(out, "user_list")
        self.assertEqual(user_list.data, [{"username": "alice", "id": "a"}])
        online = await self.store.list_online()
        self.assertEqual([(u.username, u.last_socket_id) for u in online], [("alice", "a")])

    async def test_bare_username_payload(self):
        self.router.connect("a")
        out = await self.router.dispatch("a", "user_join", "alice")
        self.assertEqual(len(events(out, "user_joined")), 1)

    async def test_second_join_on_same_session_is_rejected(self):
        await self.join("a", "alice")
        out = await self.router.dispatch("a", "user_join", {"username": "mallory"})
        self.assertEqual(out, [])
        self.assertEqual(self.router.registry.lookup("a").identity, "alice")

    async def test_join_from_unknown_session_is_rejected(self):
        out = await self.router.dispatch("ghost", "user_join", {"username": "alice"})
        self.assertEqual(out, [])

    async def test_blank_username_is_rejected(self):
        self.router.connect("a")
        self.assertEqual(await self.router.dispatch("a", "user_join", {"username": "   "}), [])
        self.assertIsNone(self.router.registry.lookup("a").identity)

    async def test_disconnect_removes_identity_from_online_users(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        out = await self.router.disconnect("a")
        left, = events(out, "user_left")
        self.assertEqual(left.data, {"username": "alice", "id": "a"})
        self.assertEqual(left.to, ("b",))
        user_list, = events(out, "user_list")
        self.assertEqual([u["username"] for u in user_list.data], ["bob"])
        self.assertEqual([u.username for u in self.router.presence.online_users()], ["bob"])
        self.assertEqual([u.username for u in await self.store.list_online()], ["bob"])

    async def test_identity_stays_online_while_another_session_lives(self):
        await self.join("a1", "alice")
        await self.join("a2", "alice")
        await self.router.disconnect("a1")
        self.assertEqual([u.id for u in self.router.presence.online_users()], ["a2"])
        self.assertEqual([u.username for u in await self.store.list_online()], ["alice"])

    async def test_disconnect_of_anonymous_session(self):
        self.router.connect("a")
        self.router.connect("b")
        out = await self.router.disconnect("a")
        self.assertEqual(events(out, "user_left"), [])
        self.assertEqual(events(out, "user_list")[0].to, ("b",))

    async def test_disconnect_is_idempotent(self):
        await self.join("a", "alice")
        await self.router.disconnect("a")
        self.assertEqual(await self.router.disconnect("a"), [])
        self.assertEqual(await self.router.disconnect("never-connected"), [])

    async def test_disconnect_purges_room_membership(self):
        await self.join("a", "alice")
        await self.router.dispatch("a", "join_room", {"roomId": "r1"})
        await self.router.disconnect("a")
        self.assertEqual(self.router.rooms.members_of("r1"), set())

    async def test_presence_failure_does_not_block_join(self):
        router = make_router(BrokenStore())
        router.connect("a")
        out = await router.dispatch("a", "user_join", {"username": "alice"})
        self.assertEqual(len(events(out, "user_joined")), 1)
        self.assertEqual(len(await router.disconnect("a")), 3)

    async def test_rejoin_during_slow_offline_write_ends_online(self):
        store = SlowOfflineStore()
        router = make_router(store)
        router.connect("a1")
        await router.dispatch("a1", "user_join", {"username": "alice"})

        leaving = asyncio.create_task(router.disconnect("a1"))
        await store.offline_started.wait()
        router.connect("a2")
        joining = asyncio.create_task(router.dispatch("a2", "user_join", {"username": "alice"}))
        await asyncio.sleep(0)
        store.release.set()
        await leaving
        await joining

        self.assertTrue(router.registry.is_online("alice"))
        online, = await store.list_online()
        self.assertEqual((online.username, online.last_socket_id), ("alice", "a2"))


class TestTyping(RouterTestCase):

    async def test_typing_from_anonymous_session_is_noop(self):
        self.router.connect("a")
        self.assertEqual(await self.router.dispatch("a", "typing", True), [])

    async def test_typing_list_after_disconnect(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        await self.router.dispatch("a", "typing", {"isTyping": True})
        out = await self.router.dispatch("b", "typing", True)
        self.assertEqual(events(out, "typing_users")[0].data, ["alice", "bob"])

        out = await self.router.disconnect("a")
        typing, = events(out, "typing_users")
        self.assertEqual(typing.data, ["bob"])
        self.assertEqual(typing.to, ("b",))

    async def test_typing_is_broadcast_globally(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        await self.router.dispatch("a", "join_room", "r1")
        out = await self.router.dispatch("a", "typing", True)
        self.assertEqual(set(out[0].to), {"a", "b"})


class TestMessages(RouterTestCase):

    async def test_broadcast_reaches_every_connected_session(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        self.router.connect("c")
        out = await self.router.dispatch("a", "send_message", {"message": "hi all"})
        msg, = out
        self.assertEqual(msg.event, "receive_message")
        self.assertEqual(len(msg.to), 3)
        self.assertEqual(msg.data["sender"], "alice")
        self.assertEqual(msg.data["timestamp"], "2024-05-01T12:00:00Z")
        stored = await self.store.query_messages()
        self.assertEqual([m.message for m in stored], ["hi all"])

    async def test_anonymous_sender(self):
        self.router.connect("a")
        out = await self.router.dispatch("a", "send_message", {"message": "who am i"})
        self.assertEqual(out[0].data["sender"], "Anonymous")

    async def test_room_message_only_reaches_members(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        await self.router.dispatch("a", "join_room", {"roomId": "r1"})

        out = await self.router.dispatch("a", "send_message", {"message": "x", "roomId": "r1"})
        self.assertEqual(out[0].to, ("a",))
        self.assertEqual(out[0].data["room"], "r1")

        await self.router.dispatch("b", "join_room", {"roomId": "r1"})
        out = await self.router.dispatch("a", "send_message", {"message": "y", "roomId": "r1"})
        self.assertEqual(set(out[0].to), {"a", "b"})

    async def test_unknown_room_is_empty_fanout(self):
        await self.join("a", "alice")
        out = await self.router.dispatch("a", "send_message", {"message": "x", "roomId": "nowhere"})
        self.assertEqual(out, [])
        self.assertEqual(len(await self.store.query_messages()), 1)

    async def test_private_message_to_sender_and_target_only(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        await self.join("c", "carol")
        out = await self.router.dispatch("a", "private_message", {"to": "bob", "message": "psst"})
        msg, = out
        self.assertEqual(msg.event, "private_message")
        self.assertEqual(msg.to, ("a", "b"))
        self.assertTrue(msg.data["isPrivate"])

    async def test_private_message_by_session_id(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        out = await self.router.dispatch("a", "private_message", {"to": "b", "message": "psst"})
        self.assertEqual(out[0].to, ("a", "b"))

    async def test_direct_message_to_session_id_is_stored_for_its_owner(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        await self.router.dispatch("a", "private_message", {"to": "b", "message": "secret plan"})
        stored, = await self.store.query_messages()
        self.assertEqual(stored.to, "bob")

        # Bob comes back on a new session and can still find it.
        await self.router.disconnect("b")
        await self.join("b2", "bob")
        out = await self.router.dispatch("b2", "search_messages", "secret")
        self.assertEqual([m["message"] for m in out[0].data], ["secret plan"])

    async def test_private_message_to_offline_user_is_stored_not_delivered(self):
        await self.join("a", "alice")
        out = await self.router.dispatch("a", "private_message", {"to": "bob", "message": "later"})
        self.assertEqual(out, [])
        stored = await self.store.query_messages()
        self.assertEqual([(m.message, m.to) for m in stored], [("later", "bob")])

    async def test_send_file_follows_message_rules(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        payload = {"fileName": "cat.png", "fileUrl": "/uploads/1-cat.png", "sender": "spoofed"}
        out = await self.router.dispatch("a", "send_file", payload)
        msg, = out
        self.assertEqual(msg.event, "receive_file")
        self.assertEqual(set(msg.to), {"a", "b"})
        self.assertEqual(msg.data["fileUrl"], "/uploads/1-cat.png")
        self.assertEqual(msg.data["sender"], "alice")

        payload = {"fileName": "cat.png", "fileUrl": "/u/cat.png", "to": "bob", "isPrivate": True}
        out = await self.router.dispatch("a", "send_file", payload)
        self.assertEqual(out[0].to, ("a", "b"))

    async def test_send_file_requires_url(self):
        await self.join("a", "alice")
        self.assertEqual(await self.router.dispatch("a", "send_file", {"fileName": "x"}), [])

    async def test_persistence_failure_suppresses_fanout(self):
        router = make_router(BrokenStore())
        router.connect("a")
        router.connect("b")
        self.assertEqual(await router.dispatch("a", "send_message", {"message": "lost"}), [])
        self.assertEqual(await router.dispatch("a", "react_message", {"messageId": 1, "reaction": "👍"}), [])
        # The failure stays local to the event.
        self.assertEqual(len(router.registry), 2)


class TestReactionsAndReceipts(RouterTestCase):

    async def asyncSetUp(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        out = await self.router.dispatch("a", "send_message", {"message": "react to me"})
        self.message_id = out[0].data["id"]

    async def test_reactions_are_appended(self):
        await self.router.dispatch("b", "react_message", {"messageId": self.message_id, "reaction": "👍"})
        out = await self.router.dispatch("a", "react_message", {"messageId": self.message_id, "reaction": "👍"})
        reacted, = out
        self.assertEqual(reacted.event, "message_reacted")
        self.assertEqual(reacted.data["reactions"], ["👍", "👍"])
        self.assertEqual(set(reacted.to), {"a", "b"})

    async def test_any_reaction_symbol_is_accepted(self):
        out = await self.router.dispatch("a", "react_message", {"messageId": str(self.message_id), "reaction": "party"})
        self.assertEqual(out[0].data["reactions"], ["party"])

    async def test_reaction_length_limit(self):
        out = await self.router.dispatch("a", "react_message", {"messageId": self.message_id, "reaction": "x" * 64})
        self.assertEqual(out[0].data["reactions"], ["x" * 64])
        out = await self.router.dispatch("a", "react_message", {"messageId": self.message_id, "reaction": "x" * 65})
        self.assertEqual(out, [])
        stored = await self.store.get_message(self.message_id)
        self.assertEqual(stored.reactions, ["x" * 64])

    async def test_read_receipts_are_a_set(self):
        payload = {"messageId": self.message_id, "userId": "alice"}
        await self.router.dispatch("a", "read_message", payload)
        out = await self.router.dispatch("a", "read_message", payload)
        read, = out
        self.assertEqual(read.event, "message_read")
        self.assertEqual(read.data["readBy"], ["alice"])

    async def test_read_defaults_to_session_identity(self):
        out = await self.router.dispatch("b", "read_message", {"messageId": self.message_id})
        self.assertEqual(out[0].data["readBy"], ["bob"])

    async def test_unknown_message_is_ignored(self):
        self.assertEqual(await self.router.dispatch("a", "react_message", {"messageId": 999, "reaction": "x"}), [])
        self.assertEqual(await self.router.dispatch("a", "read_message", {"messageId": 999, "userId": "a"}), [])

    async def test_unread_count_goes_to_requester(self):
        await self.router.dispatch("b", "read_message", {"messageId": self.message_id})
        out = await self.router.dispatch("b", "get_unread_count", {"userId": "bob"})
        self.assertEqual(out[0].data, 0)
        self.assertEqual(out[0].to, ("b",))
        out = await self.router.dispatch("a", "get_unread_count", {})
        self.assertEqual(out[0].data, 1)

    async def test_message_delivered_is_relayed(self):
        out = await self.router.dispatch("b", "message_delivered", {"messageId": self.message_id})
        self.assertEqual(out[0].data, {"messageId": self.message_id, "userId": "bob"})
        self.assertEqual(set(out[0].to), {"a", "b"})


class TestSlowWrites(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.store = GatedStore()
        self.router = make_router(self.store)
        for sid, name in (("a", "alice"), ("b", "bob")):
            self.router.connect(sid)
            await self.router.dispatch(sid, "user_join", {"username": name})

    async def test_late_session_misses_message_being_written(self):
        sending = asyncio.create_task(self.router.dispatch("a", "send_message", {"message": "hi"}))
        await self.store.write_started.wait()
        self.router.connect("late")
        self.store.release.set()
        received, = await sending
        self.assertEqual(received.event, "receive_message")
        self.assertEqual(set(received.to), {"a", "b"})

    async def test_stalled_write_does_not_hold_back_typing(self):
        sending = asyncio.create_task(self.router.dispatch("a", "send_message", {"message": "hi"}))
        await self.store.write_started.wait()
        out = await self.router.dispatch("b", "typing", True)
        self.assertEqual(out[0].event, "typing_users")
        self.assertIn("bob", out[0].data)
        self.assertFalse(sending.done())
        self.store.release.set()
        self.assertEqual(len(await sending), 1)


class TestSearchAndRooms(RouterTestCase):

    async def test_search_results_go_to_requester_only(self):
        await self.join("a", "alice")
        await self.join("b", "bob")
        await self.join("c", "carol")
        await self.router.dispatch("a", "send_message", {"message": "Lunch at noon?"})
        await self.router.dispatch("b", "send_message", {"message": "no thanks"})
        await self.router.dispatch("a", "private_message", {"to": "bob", "message": "lunch, just us"})

        out = await self.router.dispatch("c", "search_messages", "LUNCH")
        results, = out
        self.assertEqual(results.to, ("c",))
        self.assertEqual([m["message"] for m in results.data], ["Lunch at noon?"])

        out = await self.router.dispatch("b", "search_messages", {"query": "lunch"})
        self.assertEqual(len(out[0].data), 2)

    async def test_join_room_replies_with_known_room_name(self):
        room = await self.store.create_room("general")
        await self.join("a", "alice")
        out = await self.router.dispatch("a", "join_room", {"roomId": room.id})
        self.assertEqual(out[0].event, "room_joined")
        self.assertEqual(out[0].data, {"roomId": str(room.id), "name": "general", "members": 1})
        self.assertEqual(self.router.rooms.members_of(str(room.id)), {"a"})

    async def test_leave_room(self):
        await self.join("a", "alice")
        await self.router.dispatch("a", "join_room", "r1")
        out = await self.router.dispatch("a", "leave_room", {"roomId": "r1"})
        self.assertEqual(out[0].event, "room_left")
        self.assertEqual(self.router.rooms.members_of("r1"), set())

    async def test_unknown_event_is_ignored(self):
        self.router.connect("a")
        self.assertEqual(await self.router.dispatch("a", "self_destruct", {}), [])


if __name__ == "__main__":
    unittest.main()
