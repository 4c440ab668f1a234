from oidcsession.api.cookies import sign_handle, unsign_handle

SECRET = "s" * 40


def test_signed_handle_round_trips():
    assert unsign_handle(sign_handle("abc-123", SECRET), SECRET) == "abc-123"


def test_wrong_secret_rejected():
    assert unsign_handle(sign_handle("abc-123", SECRET), "t" * 40) is None


def test_modified_handle_rejected():
    value = sign_handle("abc-123", SECRET)
    forged = "abc-124" + value[len("abc-123"):]
    assert unsign_handle(forged, SECRET) is None


def test_unsigned_or_empty_values_rejected():
    assert unsign_handle(None, SECRET) is None
    assert unsign_handle("", SECRET) is None
    assert unsign_handle("no-signature", SECRET) is None
    assert unsign_handle(".sig", SECRET) is None
