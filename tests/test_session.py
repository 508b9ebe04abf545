from virtualsoc.session import Client


def test_new_client_is_guest():
    client = Client(conn="sock", address=("10.0.0.1", 5000))
    assert client.username == ""
    assert client.is_authenticated is False
    assert client.conn == "sock"


def test_set_username_authenticates():
    client = Client()
    client.set_username("alice")
    assert client.username == "alice"
    assert client.is_authenticated is True


def test_logout_resets_session():
    client = Client()
    client.set_username("alice")
    client.logout()
    assert client.username == ""
    assert client.is_authenticated is False


def test_clients_compare_by_identity():
    first, second = Client(), Client()
    assert first == first
    assert (first == second) is False