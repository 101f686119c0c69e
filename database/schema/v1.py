"""Schema v1 - Initial database schema.

This version includes tables for:
- Users and their wallet/email identities
- Friendships between users
- Subscriptions, their members and pending invitations
- Per-user notifications
- Payment bookkeeping
- Authentication sessions
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'wallet_address', 'type': 'TEXT'},
                {'name': 'email', 'type': 'TEXT'},
                {'name': 'username', 'type': 'TEXT', 'nullable': False},
                {'name': 'avatar_url', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_users_wallet', 'columns': ['wallet_address'], 'unique': True},
                {'name': 'idx_users_email', 'columns': ['email'], 'unique': True}
            ]
        },
        {
            'name': 'friendships',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'friend_id', 'type': 'UUID', 'nullable': False},
                # Canonical unordered pair "min:max", one row per pair
                {'name': 'pair_key', 'type': 'TEXT', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['friend_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_friendships_pair', 'columns': ['pair_key'], 'unique': True},
                {'name': 'idx_friendships_user', 'columns': ['user_id', 'status']},
                {'name': 'idx_friendships_friend', 'columns': ['friend_id', 'status']}
            ]
        },
        {
            'name': 'subscriptions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'cost', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'billing_cycle', 'type': 'TEXT', 'nullable': False, 'default': "'monthly'"},
                {'name': 'due_date', 'type': 'DATE'},
                {'name': 'owner_id', 'type': 'UUID', 'nullable': False},
                {'name': 'logo_url', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['owner_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_subscriptions_owner', 'columns': ['owner_id']}
            ]
        },
        {
            'name': 'subscription_members',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'subscription_id', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'share', 'type': 'DECIMAL', 'nullable': False, 'default': '0'},
                {'name': 'paid', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['subscription_id'], 'references': 'subscriptions(id)'},
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {
                    'name': 'idx_members_subscription_user',
                    'columns': ['subscription_id', 'user_id'],
                    'unique': True
                },
                {'name': 'idx_members_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'invitations',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'subscription_id', 'type': 'UUID', 'nullable': False},
                {'name': 'inviter_id', 'type': 'UUID', 'nullable': False},
                {'name': 'invitee_id', 'type': 'UUID', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['subscription_id'], 'references': 'subscriptions(id)'},
                {'columns': ['invitee_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {
                    'name': 'idx_invitations_pending',
                    'columns': ['subscription_id', 'invitee_id'],
                    'unique': True,
                    'where': "status = 'pending'"
                },
                {'name': 'idx_invitations_invitee', 'columns': ['invitee_id', 'status']}
            ]
        },
        {
            'name': 'notifications',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'content', 'type': 'JSONB', 'nullable': False},
                {'name': 'metadata', 'type': 'JSONB'},
                {'name': 'read', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_notifications_user', 'columns': ['user_id', 'created_at']},
                {'name': 'idx_notifications_unread', 'columns': ['user_id'], 'where': 'read = false'}
            ]
        },
        {
            'name': 'payments',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'subscription_id', 'type': 'UUID', 'nullable': False},
                {'name': 'sender_id', 'type': 'UUID', 'nullable': False},
                {'name': 'receiver_id', 'type': 'UUID', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'USD'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'transaction_hash', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_payments_sender', 'columns': ['sender_id']},
                {'name': 'idx_payments_receiver', 'columns': ['receiver_id']},
                {'name': 'idx_payments_subscription', 'columns': ['subscription_id']}
            ]
        },
        {
            'name': 'auth_sessions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'token', 'type': 'TEXT', 'nullable': False},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'revoked', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'user_agent', 'type': 'TEXT'},
                {'name': 'ip_address', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'last_used_at', 'type': 'TIMESTAMPTZ'}
            ],
            'indexes': [
                {'name': 'idx_sessions_token', 'columns': ['token'], 'unique': True},
                {'name': 'idx_sessions_user', 'columns': ['user_id']}
            ]
        }
    ]
}
