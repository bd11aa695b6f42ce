"""Tests for the execution engine."""

import asyncio

import pytest

from blockflow.config import EngineConfig
from blockflow.engine import Engine
from blockflow.errors import (
    BehaviorError,
    CyclicDependencyError,
    MissingLiteralError,
    NoEntryPointError,
    PortNotFoundError,
    PullDepthError,
)
from blockflow.events import Event, EventKind
from blockflow.registry import NodeKindDefinition
from blockflow.types import Direction, PortSpec, RunStatus, ValueType


def capture_logs(engine: Engine) -> list:
    """Collect the messages of every log event."""
    messages = []
    engine.observe(on_log=lambda level, message: messages.append(message))
    return messages


def capture_events(engine: Engine) -> list[Event]:
    events = []
    engine.subscribe(events.append)
    return events


def counting_kind(engine: Engine, kind_id: str = "test.count", value=1) -> list[int]:
    """Register a data-only kind that records each invocation."""
    calls = []

    def behavior(ctx):
        calls.append(1)
        return {"value": value}

    engine.register_kind(NodeKindDefinition(
        kind_id,
        shape="expression",
        outputs={"value": {"value_type": "number"}},
        behavior=behavior,
    ))
    return calls


class TestRun:
    """Test Engine.run."""

    async def test_no_entry_point(self) -> None:
        """Test running a graph without start nodes."""
        engine = Engine()
        engine.add_node("debug.log")

        with pytest.raises(NoEntryPointError):
            await engine.run()

    async def test_linear_chain(self) -> None:
        """Test control flow through a chain of statements."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        first = engine.add_node("debug.log", {"message": "one"})
        second = engine.add_node("debug.log", {"message": "two"})
        engine.connect(start.id, "exec", first.id, "exec")
        engine.connect(first.id, "exec", second.id, "exec")

        result = await engine.run()

        assert result.success
        assert logs == ["one", "two"]
        assert result.triggers[0].nodes_executed == 3

    async def test_set_then_log_computed_value(self) -> None:
        """Test variable write followed by a pulled computation."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        set_x = engine.add_node("var.set", {"name": "x", "value": 1})
        log = engine.add_node("debug.log")
        add = engine.add_node("math.add", {"b": 1})
        get_x = engine.add_node("var.get", {"name": "x"})
        engine.connect(start.id, "exec", set_x.id, "exec")
        engine.connect(set_x.id, "exec", log.id, "exec")
        engine.connect(add.id, "value", log.id, "message")
        engine.connect(get_x.id, "value", add.id, "a")

        result = await engine.run()

        assert result.success
        assert logs == [2]
        assert engine.variables.snapshot() == {"x": 1}

    async def test_fan_out_runs_branches_in_edge_order(self) -> None:
        """Test branches leaving one exec output run one after another."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        for text in ("a", "b", "c"):
            log = engine.add_node("debug.log", {"message": text})
            engine.connect(start.id, "exec", log.id, "exec")

        await engine.run()

        assert logs == ["a", "b", "c"]

    async def test_branch_selection(self) -> None:
        """Test a behavior choosing an exec output by name."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        branch = engine.add_node("logic.if", {"condition": "false"})
        yes = engine.add_node("debug.log", {"message": "yes"})
        no = engine.add_node("debug.log", {"message": "no"})
        engine.connect(start.id, "exec", branch.id, "exec")
        engine.connect(branch.id, "then", yes.id, "exec")
        engine.connect(branch.id, "else", no.id, "exec")

        await engine.run()

        assert logs == ["no"]

    async def test_start_triggers_interleave(self) -> None:
        """Test two start nodes run concurrently."""
        engine = Engine()
        logs = capture_logs(engine)
        for name in ("slow", "fast"):
            start = engine.add_node("event.start")
            wait = engine.add_node("logic.wait", {"ms": 50 if name == "slow" else 0})
            log = engine.add_node("debug.log", {"message": name})
            engine.connect(start.id, "exec", wait.id, "exec")
            engine.connect(wait.id, "exec", log.id, "exec")

        result = await engine.run()

        assert result.success
        assert logs == ["fast", "slow"]
        assert len(result.triggers) == 2

    async def test_long_chain_does_not_exhaust_stack(self) -> None:
        """Test a linear chain far longer than the recursion limit."""
        engine = Engine()
        start = engine.add_node("event.start")
        previous = start
        for _ in range(3000):
            node = engine.add_node("var.set", {"name": "n", "value": 1})
            engine.connect(previous.id, "exec", node.id, "exec")
            previous = node

        result = await engine.run()

        assert result.success
        assert result.triggers[0].nodes_executed == 3001


class TestMemoization:
    """Test per-trigger caching of data-only nodes."""

    async def test_data_node_invoked_once_per_trigger(self) -> None:
        """Test a node pulled twice in one trigger runs once."""
        engine = Engine()
        calls = counting_kind(engine)
        start = engine.add_node("event.start")
        source = engine.add_node("test.count")
        first = engine.add_node("debug.log")
        second = engine.add_node("debug.log")
        engine.connect(start.id, "exec", first.id, "exec")
        engine.connect(first.id, "exec", second.id, "exec")
        engine.connect(source.id, "value", first.id, "message")
        engine.connect(source.id, "value", second.id, "message")

        await engine.run()
        assert len(calls) == 1

        await engine.run()
        assert len(calls) == 2

    async def test_variable_write_invalidates_read(self) -> None:
        """Test variable reads see writes made later in the same trigger."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        get_x = engine.add_node("var.get", {"name": "x"})
        before = engine.add_node("debug.log")
        set_x = engine.add_node("var.set", {"name": "x", "value": 5})
        after = engine.add_node("debug.log")
        engine.connect(start.id, "exec", before.id, "exec")
        engine.connect(before.id, "exec", set_x.id, "exec")
        engine.connect(set_x.id, "exec", after.id, "exec")
        engine.connect(get_x.id, "value", before.id, "message")
        engine.connect(get_x.id, "value", after.id, "message")

        await engine.run()

        assert logs == [None, 5]

    async def test_node_fed_by_variable_runs_once(self) -> None:
        """Test a consumer of a variable read is not re-invoked without a write."""
        engine = Engine()
        logs = capture_logs(engine)
        calls = []

        async def behavior(ctx):
            calls.append(1)
            return {"value": len(calls) + await ctx.pull("x")}

        engine.register_kind(NodeKindDefinition(
            "test.count_from",
            shape="expression",
            inputs={"x": {"value_type": "number"}},
            outputs={"value": {"value_type": "number"}},
            behavior=behavior,
        ))
        engine.variables.set("n", 0)
        start = engine.add_node("event.start")
        get_n = engine.add_node("var.get", {"name": "n"})
        counter = engine.add_node("test.count_from")
        first = engine.add_node("debug.log")
        second = engine.add_node("debug.log")
        engine.connect(start.id, "exec", first.id, "exec")
        engine.connect(first.id, "exec", second.id, "exec")
        engine.connect(get_n.id, "value", counter.id, "x")
        engine.connect(counter.id, "value", first.id, "message")
        engine.connect(counter.id, "value", second.id, "message")

        await engine.run()

        assert len(calls) == 1
        assert logs == [1, 1]

    async def test_random_drawn_once_per_trigger(self) -> None:
        """Test two consumers of one random node see the same value."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        rand = engine.add_node("math.random")
        first = engine.add_node("debug.log")
        second = engine.add_node("debug.log")
        engine.connect(start.id, "exec", first.id, "exec")
        engine.connect(first.id, "exec", second.id, "exec")
        engine.connect(rand.id, "value", first.id, "message")
        engine.connect(rand.id, "value", second.id, "message")

        await engine.run()

        assert len(logs) == 2
        assert logs[0] == logs[1]

    async def test_loop_index_consumer_once_per_iteration(self) -> None:
        """Test a node fed by a loop index runs once per published index."""
        engine = Engine()
        logs = capture_logs(engine)
        calls = []

        async def behavior(ctx):
            calls.append(1)
            return {"value": await ctx.pull("x") * 2}

        engine.register_kind(NodeKindDefinition(
            "test.double",
            shape="expression",
            inputs={"x": {"value_type": "number"}},
            outputs={"value": {"value_type": "number"}},
            behavior=behavior,
        ))
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.for", {"from": 0, "to": 3})
        double = engine.add_node("test.double")
        first = engine.add_node("debug.log")
        second = engine.add_node("debug.log")
        engine.connect(start.id, "exec", loop.id, "exec")
        engine.connect(loop.id, "loop", first.id, "exec")
        engine.connect(first.id, "exec", second.id, "exec")
        engine.connect(loop.id, "index", double.id, "x")
        engine.connect(double.id, "value", first.id, "message")
        engine.connect(double.id, "value", second.id, "message")

        await engine.run()

        assert logs == [0, 0, 2, 2, 4, 4]
        assert len(calls) == 3

    async def test_last_outputs_mirror(self) -> None:
        """Test instances expose their latest outputs for inspection."""
        engine = Engine()
        start = engine.add_node("event.start")
        add = engine.add_node("math.add", {"a": 2, "b": 3})
        log = engine.add_node("debug.log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.connect(add.id, "value", log.id, "message")

        await engine.run()

        assert add.last_outputs == {"value": 5}


class TestLoops:
    """Test loop kinds."""

    async def test_for_loop(self) -> None:
        """Test the body sees each index and done fires once."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.for", {"from": 0, "to": 5})
        body = engine.add_node("debug.log")
        add = engine.add_node("math.add", {"b": 10})
        done = engine.add_node("debug.log", {"message": "done"})
        engine.connect(start.id, "exec", loop.id, "exec")
        engine.connect(loop.id, "loop", body.id, "exec")
        engine.connect(loop.id, "done", done.id, "exec")
        engine.connect(loop.id, "index", add.id, "a")
        engine.connect(add.id, "value", body.id, "message")

        result = await engine.run()

        assert result.success
        assert logs == [10, 11, 12, 13, 14, "done"]

    async def test_empty_for_loop(self) -> None:
        """Test a range with no indices goes straight to done."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.for", {"from": 3, "to": 3})
        body = engine.add_node("debug.log", {"message": "body"})
        done = engine.add_node("debug.log", {"message": "done"})
        engine.connect(start.id, "exec", loop.id, "exec")
        engine.connect(loop.id, "loop", body.id, "exec")
        engine.connect(loop.id, "done", done.id, "exec")

        await engine.run()

        assert logs == ["done"]

    async def test_while_loop_reads_fresh_condition(self) -> None:
        """Test a while loop driven by a variable."""
        engine = Engine()
        logs = capture_logs(engine)
        engine.variables.set("go", True)
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.while")
        get_go = engine.add_node("var.get", {"name": "go"})
        stop_flag = engine.add_node("var.set", {"name": "go", "value": False})
        done = engine.add_node("debug.log", {"message": "exit"})
        engine.connect(start.id, "exec", loop.id, "exec")
        engine.connect(get_go.id, "value", loop.id, "condition")
        engine.connect(loop.id, "loop", stop_flag.id, "exec")
        engine.connect(loop.id, "exit", done.id, "exec")

        await engine.run()

        assert logs == ["exit"]

    async def test_stop_ends_infinite_loop(self) -> None:
        """Test stop takes effect at the next iteration boundary."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.while", {"condition": True})
        body = engine.add_node("var.set", {"name": "spin", "value": 1})
        done = engine.add_node("debug.log", {"message": "exit"})
        engine.connect(start.id, "exec", loop.id, "exec")
        engine.connect(loop.id, "loop", body.id, "exec")
        engine.connect(loop.id, "exit", done.id, "exec")

        task = asyncio.ensure_future(engine.run())
        await asyncio.sleep(0.02)
        engine.stop()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.status == RunStatus.CANCELLED
        assert not engine.running
        assert logs == []

    async def test_stop_wakes_wait(self) -> None:
        """Test a pending wait is cut short and does not continue."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        wait = engine.add_node("logic.wait", {"ms": 5000})
        log = engine.add_node("debug.log", {"message": "late"})
        engine.connect(start.id, "exec", wait.id, "exec")
        engine.connect(wait.id, "exec", log.id, "exec")

        task = asyncio.ensure_future(engine.run())
        await asyncio.sleep(0.01)
        engine.stop()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.status == RunStatus.CANCELLED
        assert logs == []

    async def test_stop_from_loop_body(self) -> None:
        """Test a for loop ends early and its done branch runs nothing."""
        engine = Engine()
        logs = capture_logs(engine)
        calls = []

        def stopper(ctx):
            calls.append(ctx.node.id)
            if len(calls) == 3:
                engine.stop()

        engine.register_kind(NodeKindDefinition("test.stopper", behavior=stopper))
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.for", {"from": 0, "to": 10})
        body = engine.add_node("test.stopper")
        done = engine.add_node("debug.log", {"message": "done"})
        engine.connect(start.id, "exec", loop.id, "exec")
        engine.connect(loop.id, "loop", body.id, "exec")
        engine.connect(loop.id, "done", done.id, "exec")

        result = await engine.run()

        assert len(calls) == 3
        assert logs == []
        assert result.status == RunStatus.CANCELLED


class TestErrors:
    """Test error detection and containment."""

    async def test_cycle_detected(self) -> None:
        """Test mutually dependent data nodes fail with a cycle error."""
        engine = Engine()
        start = engine.add_node("event.start")
        a = engine.add_node("math.add")
        b = engine.add_node("math.add")
        log = engine.add_node("debug.log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.connect(a.id, "value", log.id, "message")
        engine.connect(a.id, "value", b.id, "a")
        engine.connect(b.id, "value", a.id, "a")

        result = await engine.run()

        assert result.status == RunStatus.ERROR
        assert isinstance(result.errors[0], CyclicDependencyError)

    async def test_failure_isolated_to_trigger(self) -> None:
        """Test one failing trigger does not affect another."""
        engine = Engine()
        logs = capture_logs(engine)
        events = capture_events(engine)

        bad_start = engine.add_node("event.start")
        div = engine.add_node("math.div", {"a": 1, "b": 0})
        bad_log = engine.add_node("debug.log")
        engine.connect(bad_start.id, "exec", bad_log.id, "exec")
        engine.connect(div.id, "value", bad_log.id, "message")

        good_start = engine.add_node("event.start")
        good_log = engine.add_node("debug.log", {"message": "ok"})
        engine.connect(good_start.id, "exec", good_log.id, "exec")

        result = await engine.run()

        statuses = {t.origin_node_id: t.status for t in result.triggers}
        assert statuses == {bad_start.id: RunStatus.ERROR, good_start.id: RunStatus.OK}
        assert result.status == RunStatus.ERROR
        assert logs == ["ok"]

        errored = [e for e in events if e.kind == EventKind.NODE_ERRORED]
        assert [e.node_id for e in errored] == [div.id]
        error = result.errors[0]
        assert isinstance(error, BehaviorError)
        assert isinstance(error.original, ZeroDivisionError)
        assert isinstance(error.__cause__, ZeroDivisionError)
        assert div.errored

    async def test_errored_flag_cleared_on_next_run(self) -> None:
        """Test a new run starts with clean error flags."""
        engine = Engine()
        start = engine.add_node("event.start")
        div = engine.add_node("math.div", {"a": 1, "b": 0})
        log = engine.add_node("debug.log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.connect(div.id, "value", log.id, "message")

        await engine.run()
        assert div.errored

        engine.set_literal_input(div.id, "b", 2)
        result = await engine.run()
        assert result.success
        assert not div.errored

    async def test_unproduced_statement_output(self) -> None:
        """Test pulling a loop index outside the loop."""
        engine = Engine()
        start = engine.add_node("event.start")
        loop = engine.add_node("logic.for")
        log = engine.add_node("debug.log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.connect(loop.id, "index", log.id, "message")

        result = await engine.run()

        assert isinstance(result.errors[0], MissingLiteralError)

    async def test_invalid_exec_name_returned(self) -> None:
        """Test a behavior returning a name that is not an exec output."""
        engine = Engine()
        engine.register_kind(NodeKindDefinition("test.bad", behavior=lambda ctx: "nowhere"))
        start = engine.add_node("event.start")
        bad = engine.add_node("test.bad")
        engine.connect(start.id, "exec", bad.id, "exec")

        result = await engine.run()

        assert isinstance(result.errors[0], BehaviorError)
        assert bad.errored

    async def test_run_node_raises(self) -> None:
        """Test direct execution propagates errors to the caller."""
        engine = Engine()
        div = engine.add_node("math.div", {"b": 0})
        log = engine.add_node("debug.log")
        engine.connect(div.id, "value", log.id, "message")

        with pytest.raises(BehaviorError):
            await engine.run_node(log.id)

    async def test_advance_unknown_port(self) -> None:
        """Test advancing along an exec output the kind lacks."""
        async def behavior(ctx):
            await ctx.advance("sideways")

        engine = Engine()
        engine.register_kind(NodeKindDefinition("test.lost", behavior=behavior))
        node = engine.add_node("test.lost")

        with pytest.raises(PortNotFoundError):
            await engine.run_node(node.id)
        assert node.errored

    async def test_pull_depth_bound(self) -> None:
        """Test deep data chains fail cleanly instead of overflowing."""
        engine = Engine(max_pull_depth=5)
        previous = engine.add_node("math.add")
        for _ in range(10):
            node = engine.add_node("math.add")
            engine.connect(previous.id, "value", node.id, "a")
            previous = node
        log = engine.add_node("debug.log")
        engine.connect(previous.id, "value", log.id, "message")

        with pytest.raises(PullDepthError):
            await engine.run_node(log.id)

    async def test_deep_data_chain_resolves(self) -> None:
        """Test an acyclic data chain far longer than the recursion limit."""
        engine = Engine()
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        previous = engine.add_node("math.add", {"a": 0, "b": 1})
        for _ in range(1500):
            node = engine.add_node("math.add", {"b": 1})
            engine.connect(previous.id, "value", node.id, "a")
            previous = node
        log = engine.add_node("debug.log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.connect(previous.id, "value", log.id, "message")

        result = await engine.run()

        assert result.success
        assert logs == [1501]


class TestMissingLiterals:
    """Test inputs with no edge, literal or default."""

    def register(self, engine: Engine) -> str:
        async def behavior(ctx):
            return {"value": await ctx.pull("x")}

        engine.register_kind(NodeKindDefinition(
            "test.echo",
            shape="expression",
            inputs=[PortSpec("x", Direction.IN, ValueType.ANY)],
            outputs={"value": {}},
            behavior=behavior,
        ))
        return engine.add_node("test.echo").id

    async def test_error_policy(self) -> None:
        """Test the default policy raises."""
        engine = Engine()
        node_id = self.register(engine)

        with pytest.raises(MissingLiteralError):
            await engine.pull(node_id, "x")

    async def test_none_policy(self) -> None:
        """Test the lenient policy yields None."""
        engine = Engine(config=EngineConfig(missing_literal_policy="none"))
        node_id = self.register(engine)

        assert await engine.pull(node_id, "x") is None


class TestStepAndEvents:
    """Test stepping, timers and external events."""

    async def test_step_runs_one_trigger_at_a_time(self) -> None:
        """Test each step call runs the next start node."""
        engine = Engine()
        logs = capture_logs(engine)
        for text in ("first", "second"):
            start = engine.add_node("event.start")
            log = engine.add_node("debug.log", {"message": text})
            engine.connect(start.id, "exec", log.id, "exec")

        one = await engine.step()
        assert logs == ["first"]
        two = await engine.step()
        assert logs == ["first", "second"]
        assert one.success and two.success
        assert one.trigger_id != two.trigger_id

    async def test_step_without_entry_point(self) -> None:
        """Test stepping an empty graph."""
        with pytest.raises(NoEntryPointError):
            await Engine().step()

    async def test_step_skips_removed_node(self) -> None:
        """Test a queued node removed between steps is skipped."""
        engine = Engine()
        logs = capture_logs(engine)
        starts = []
        for text in ("first", "second", "third"):
            start = engine.add_node("event.start")
            log = engine.add_node("debug.log", {"message": text})
            engine.connect(start.id, "exec", log.id, "exec")
            starts.append(start)

        await engine.step()
        engine.remove_node(starts[1].id)
        result = await engine.step()

        assert result.origin_node_id == starts[2].id
        assert logs == ["first", "third"]

    async def test_run_twice_keeps_one_registration(self) -> None:
        """Test running again re-arms event nodes instead of stacking them."""
        engine = Engine()
        engine.add_node("event.start")
        engine.add_node("time.interval", {"ms": 1000})
        engine.add_node("event.listen", {"name": "ping"})

        await engine.run()
        await engine.run()

        assert engine.scheduler.active_count == 2
        engine.stop()

    async def test_interval_fires_until_stopped(self) -> None:
        """Test interval nodes start new triggers with the tick count."""
        engine = Engine(min_interval_ms=1)
        logs = capture_logs(engine)
        engine.add_node("event.start")
        interval = engine.add_node("time.interval", {"ms": 10})
        log = engine.add_node("debug.log")
        engine.connect(interval.id, "exec", log.id, "exec")
        engine.connect(interval.id, "tick", log.id, "message")

        await engine.run()
        await asyncio.sleep(0.08)
        engine.stop()
        await engine.join()
        seen = list(logs)
        await asyncio.sleep(0.03)

        assert len(seen) >= 2
        assert seen[:2] == [1, 2]
        assert logs == seen
        assert engine.scheduler.active_count == 0
        assert "registration" not in interval.extension_state

    async def test_listener_receives_payload(self) -> None:
        """Test external events start triggers from listener nodes."""
        engine = Engine()
        logs = capture_logs(engine)
        engine.add_node("event.start")
        listener = engine.add_node("event.listen", {"name": "ping"})
        log = engine.add_node("debug.log")
        engine.connect(listener.id, "exec", log.id, "exec")
        engine.connect(listener.id, "payload", log.id, "message")

        await engine.run()
        assert engine.dispatch_event("ping", 42) == 1
        assert engine.dispatch_event("pong", 0) == 0
        await engine.join()

        assert logs == [42]

    async def test_listener_without_name_does_nothing(self) -> None:
        """Test an empty event name registers nothing."""
        engine = Engine()
        engine.add_node("event.start")
        engine.add_node("event.listen")

        await engine.run()

        assert engine.scheduler.active_count == 0

    async def test_fire_after_stop_is_ignored(self) -> None:
        """Test no new trigger starts once stopped."""
        engine = Engine()
        start = engine.add_node("event.start")
        await engine.run()
        engine.stop()

        assert engine.fire(start.id) is None

    async def test_remove_node_cancels_its_timers(self) -> None:
        """Test removing an armed node cancels its registrations."""
        engine = Engine()
        engine.add_node("event.start")
        interval = engine.add_node("time.interval", {"ms": 1000})

        await engine.run()
        assert engine.scheduler.active_count == 1

        engine.remove_node(interval.id)
        assert engine.scheduler.active_count == 0
        engine.stop()


class TestRegistrationWhileRunning:
    """Test replacing kinds after nodes exist."""

    async def test_existing_instances_adopt_new_behavior(self) -> None:
        """Test a re-registered kind takes effect at the next execution."""
        engine = Engine()
        logs = capture_logs(engine)
        counting_kind(engine, "test.value", value=1)
        start = engine.add_node("event.start")
        source = engine.add_node("test.value")
        log = engine.add_node("debug.log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.connect(source.id, "value", log.id, "message")

        await engine.run()
        counting_kind(engine, "test.value", value=2)
        await engine.run()

        assert logs == [1, 2]


class TestPersistence:
    """Test snapshot and load."""

    async def test_snapshot_and_load(self) -> None:
        """Test a snapshot restores graph and variables."""
        engine = Engine()
        start = engine.add_node("event.start", node_id="start")
        log = engine.add_node("debug.log", {"message": "hello"}, node_id="log")
        engine.connect(start.id, "exec", log.id, "exec")
        engine.variables.set("score", 3)

        document = engine.snapshot()
        other = Engine()
        logs = capture_logs(other)
        other.load(document)
        result = await other.run()

        assert result.success
        assert logs == ["hello"]
        assert other.variables.get("score") == 3


class TestObservers:
    """Test the observer event stream."""

    async def test_event_sequence(self) -> None:
        """Test events of a simple run arrive in order."""
        engine = Engine()
        events = capture_events(engine)
        start = engine.add_node("event.start")
        log = engine.add_node("debug.log", {"message": "x"})
        engine.connect(start.id, "exec", log.id, "exec")

        await engine.run()

        kinds = [e.kind for e in events]
        assert kinds == [
            EventKind.RUN_STARTED,
            EventKind.TRIGGER_STARTED,
            EventKind.NODE_STARTED,
            EventKind.NODE_FINISHED,
            EventKind.NODE_STARTED,
            EventKind.LOG,
            EventKind.NODE_FINISHED,
            EventKind.TRIGGER_FINISHED,
        ]

    async def test_failing_observer_does_not_break_run(self) -> None:
        """Test a raising subscriber is isolated."""
        engine = Engine()

        def broken(event: Event) -> None:
            raise RuntimeError("observer bug")

        engine.subscribe(broken)
        logs = capture_logs(engine)
        start = engine.add_node("event.start")
        log = engine.add_node("debug.log", {"message": "still"})
        engine.connect(start.id, "exec", log.id, "exec")

        result = await engine.run()

        assert result.success
        assert logs == ["still"]
