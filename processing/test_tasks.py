import threading
import unittest

import errors
import events
import tasks


class TestParallelExecutor(unittest.TestCase):

  def setUp(self):
    self.broadcaster = events.CollectingBroadcaster()
    self.executor = tasks.ParallelExecutor(self.broadcaster, max_workers=2)

  def tearDown(self):
    self.executor.shutdown()

  def test_submit(self):
    future = self.executor.submit('Addition', lambda a, b: a + b, 2, 3)
    self.assertEqual(future.result(timeout=5), 5)

  def test_then_chains_results(self):
    first = self.executor.submit('First', lambda: 2)
    second = self.executor.then(first, 'Second', lambda value: value * 10)
    self.assertEqual(second.result(timeout=5), 20)

  def test_continuations_do_not_block_workers(self):
    executor = tasks.ParallelExecutor(max_workers=1)
    try:
      future = executor.submit('Step 0', lambda: 0)
      for i in range(1, 10):
        future = executor.then(future, f'Step {i}', lambda value: value + 1)
      self.assertEqual(future.result(timeout=5), 9)
    finally:
      executor.shutdown()

  def test_all_of(self):
    first = self.executor.submit('First', lambda: 'a')
    second = self.executor.submit('Second', lambda: 'b')
    joined = self.executor.all_of([first, second], 'Join',
                                  lambda a, b: a + b)
    self.assertEqual(joined.result(timeout=5), 'ab')

  def test_failure_is_wrapped_and_reported(self):
    def fail():
      raise RuntimeError('boom')

    future = self.executor.submit('Failing stage', fail)
    with self.assertRaises(errors.ProcessingFailure) as context:
      future.result(timeout=5)
    self.assertEqual(context.exception.stage, 'Failing stage')
    self.assertIsInstance(context.exception.cause, RuntimeError)
    self.assertTrue(self.executor.wait(timeout=5))
    self.assertEqual(len(self.executor.failures()), 1)
    (error,) = self.broadcaster.events(events.ErrorEvent)
    self.assertIn('boom', error.message)
    self.assertIn('RuntimeError', error.detail)

  def test_dependents_of_failure_are_not_run(self):
    ran = threading.Event()

    def fail():
      raise ValueError('bad input')

    failed = self.executor.submit('Failing stage', fail)
    dependent = self.executor.then(failed, 'Dependent', lambda _: ran.set())
    with self.assertRaises(errors.ProcessingFailure):
      dependent.result(timeout=5)
    self.assertTrue(self.executor.wait(timeout=5))
    self.assertFalse(ran.is_set())
    self.assertEqual(len(self.executor.failures()), 1)

  def test_interrupt(self):
    self.executor.interrupt()
    future = self.executor.submit('Interrupted stage', lambda: 1)
    with self.assertRaises(errors.ProcessingInterrupted):
      future.result(timeout=5)
    self.assertFalse(self.executor.failures())

  def test_interruption_is_observed_by_running_stage(self):
    started = threading.Event()

    def long_stage():
      started.set()
      while True:
        tasks.raise_if_interrupted(self.executor.interrupted)

    future = self.executor.submit('Long stage', long_stage)
    self.assertTrue(started.wait(timeout=5))
    self.executor.interrupt()
    with self.assertRaises(errors.ProcessingInterrupted):
      future.result(timeout=5)

  def test_wait_for_pending_tasks(self):
    release = threading.Event()
    self.executor.submit('Blocked', release.wait)
    self.assertFalse(self.executor.wait(timeout=0.05))
    release.set()
    self.assertTrue(self.executor.wait(timeout=5))

  def test_context_manager(self):
    with tasks.ParallelExecutor(max_workers=1) as executor:
      future = executor.submit('Stage', lambda: 42)
    self.assertEqual(future.result(), 42)


class TestRaiseIfInterrupted(unittest.TestCase):

  def test_no_event(self):
    tasks.raise_if_interrupted(None)

  def test_event(self):
    event = threading.Event()
    tasks.raise_if_interrupted(event)
    event.set()
    with self.assertRaises(errors.ProcessingInterrupted):
      tasks.raise_if_interrupted(event)


if __name__ == '__main__':
  unittest.main()
