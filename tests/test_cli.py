import asyncio
import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from marketchat import cli
from marketchat.errors import CredentialsNotProvided, RemoteServiceError
from marketchat.models import Conversation, ListingSummary, Notice, Profile
from tests.fakes import make_message

NOW = datetime(2024, 5, 1, 18, 0, tzinfo=timezone.utc)


def _conversations():
    last = make_message('m2', 'alice', 'bob', 'Is it still available?', minute=5)
    return [
        Conversation(
            partner_id='alice',
            messages=[last],
            unread_count=1,
            last_message=last,
            listing_id='7',
            partner_profile=Profile('alice', 'Alice Smith'),
            listing=ListingSummary('7', 'Ford', 'Focus', 2015, 6500),
        ),
        Conversation(partner_id='carol'),
    ]


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self.service = MagicMock()
        self.service.list_conversations = AsyncMock(return_value=_conversations())
        self.service.open_conversation = AsyncMock(return_value=[])
        self.service.send_message = AsyncMock()

    def test_render_conversation_line(self) -> None:
        line = cli.render_conversation_line(1, _conversations()[0], now=NOW)

        self.assertEqual(
            line,
            '1. Alice Smith (1 unread) - 12:05: Is it still available? '
            '[Ford Focus 2015, $6,500]',
        )
        self.assertEqual(
            cli.render_conversation_line(2, _conversations()[1], now=NOW),
            '2. Unknown User',
        )

    def test_resolve_partner(self) -> None:
        conversations = _conversations()

        self.assertEqual(cli.resolve_partner('2', conversations), 'carol')
        self.assertEqual(cli.resolve_partner('alice', conversations), 'alice')
        self.assertEqual(cli.resolve_partner('/chat/dave?listingId=1'), 'dave')
        self.assertEqual(cli.resolve_partner('9', conversations), '9')
        self.assertIsNone(cli.resolve_partner(''))

    @patch('builtins.print')
    def test_list_prints_conversations(self, mock_print) -> None:
        result = asyncio.run(cli.handle_list_command(self.service, 'bob'))

        self.assertEqual(len(result), 2)
        self.service.list_conversations.assert_awaited_once_with('bob')
        self.assertEqual(mock_print.call_count, 2)

    @patch('builtins.print')
    def test_list_empty_state(self, mock_print) -> None:
        self.service.list_conversations.return_value = []

        asyncio.run(cli.handle_list_command(self.service, 'bob'))

        printed = mock_print.call_args[0][0]
        self.assertIn("You don't have any messages yet.", printed)

    @patch('builtins.print')
    def test_list_failure_returns_empty(self, mock_print) -> None:
        self.service.list_conversations.side_effect = RemoteServiceError('query messages', 503)

        self.assertEqual(asyncio.run(cli.handle_list_command(self.service, 'bob')), [])

    @patch('builtins.print')
    def test_open_by_index(self, mock_print) -> None:
        message = make_message('m1', 'alice', 'bob', 'Hi', is_read=True)
        self.service.open_conversation.return_value = [message]

        asyncio.run(cli.handle_open_command('1', self.service, 'bob', _conversations()))

        self.service.open_conversation.assert_awaited_once_with('bob', 'alice')
        self.assertIn('alice: Hi', mock_print.call_args[0][0])

    @patch('builtins.print')
    def test_send_reuses_conversation_listing(self, mock_print) -> None:
        asyncio.run(
            cli.handle_send_command('1 see you at noon', self.service, 'bob', _conversations())
        )

        self.service.send_message.assert_awaited_once_with(
            'bob', 'alice', 'see you at noon', '7'
        )
        mock_print.assert_called_with('Message sent to alice.')

    @patch('builtins.print')
    def test_send_explicit_listing_and_usage(self, mock_print) -> None:
        asyncio.run(cli.handle_send_command('dave --listing 3 hello', self.service, 'bob'))
        self.service.send_message.assert_awaited_once_with('bob', 'dave', 'hello', '3')

        asyncio.run(cli.handle_send_command('dave', self.service, 'bob'))
        mock_print.assert_called_with('Usage: send <partner_id|index> [--listing <id>] <text>')
        self.assertEqual(self.service.send_message.await_count, 1)

    @patch('builtins.print')
    def test_delete_command(self, mock_print) -> None:
        self.service.delete_conversation.return_value = True

        self.assertTrue(cli.handle_delete_command('2', self.service, _conversations()))

        self.service.delete_conversation.assert_called_once_with('carol')
        mock_print.assert_called_with('Local history with carol deleted.')

    @patch('builtins.print')
    def test_print_notice(self, mock_print) -> None:
        cli.print_notice(Notice('Error', 'Could not load messages.', 'destructive'))

        mock_print.assert_called_once_with('[!] Error: Could not load messages.')

    @patch('builtins.print')
    @patch('marketchat.cli.load_settings')
    def test_main_exits_without_credentials(self, mock_load_settings, mock_print) -> None:
        mock_load_settings.side_effect = CredentialsNotProvided('api key')

        with self.assertRaises(SystemExit) as ctx:
            cli.main(['--config', 'missing.ini'])

        self.assertEqual(ctx.exception.code, 1)
        mock_load_settings.assert_called_once_with('missing.ini')

    @patch('builtins.input', side_effect=['', 'user-9'])
    @patch('builtins.print')
    def test_obtain_user_id_prompts_until_given(self, mock_print, mock_input) -> None:
        settings = MagicMock(user_id=None)

        self.assertEqual(cli.obtain_user_id(settings), 'user-9')
        self.assertEqual(mock_input.call_count, 2)


if __name__ == '__main__':
    unittest.main()
