from arq import ARQConfig, SelectiveARQ


class Quick(SelectiveARQ):
    def _sleep_ms(self, ms):
        pass


def run(verdicts, max_retries=3):
    sent = []
    replies = list(verdicts)
    arq = Quick(ARQConfig(max_retries=max_retries))
    ok = arq.send_with_retries(("b", 0), b"frame",
                               lambda k, p: sent.append((k, p)),
                               lambda k, t: replies.pop(0) if replies else None)
    return ok, sent, arq


def test_first_reply_wins():
    ok, sent, arq = run([True])
    assert ok and len(sent) == 1 and arq.sends == 1


def test_retries_until_reply():
    ok, sent, _ = run([None, None, True])
    assert ok and len(sent) == 3
    assert sent[0] == (("b", 0), b"frame")


def test_refusal_is_final():
    ok, sent, _ = run([False, True])
    assert not ok and len(sent) == 1


def test_gives_up_after_max_retries():
    ok, sent, _ = run([], max_retries=2)
    assert not ok and len(sent) == 3
