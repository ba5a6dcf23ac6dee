"""Schema v1 - Initial bridge ledger schema.

This version includes tables for:
- Zcash deposits and the wZEC mints that settle them
- wZEC burns and the Zcash withdrawals that settle them
- The singleton bridge state (reserve aggregate, chain cursors, pause flag)
- The append-only audit log
- Transfers rejected by validation, kept for manual recovery
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'deposit',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20, 8)', 'nullable': False},
                {'name': 'from_address', 'type': 'TEXT'},
                {'name': 'destination_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'memo', 'type': 'TEXT'},
                {'name': 'confirmations', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'error_message', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_deposit_reference', 'columns': ['reference_id'], 'unique': True},
                {'name': 'idx_deposit_status', 'columns': ['status']},
                {'name': 'idx_deposit_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'mint',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20, 8)', 'nullable': False},
                {'name': 'recipient', 'type': 'TEXT', 'nullable': False},
                {'name': 'deposit_reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'deposit_id', 'type': 'UUID'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'error_message', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['deposit_id'], 'references': 'deposit(id)'}
            ],
            'indexes': [
                {'name': 'idx_mint_reference', 'columns': ['reference_id'], 'unique': True},
                {'name': 'idx_mint_deposit', 'columns': ['deposit_reference_id'], 'unique': True},
                {'name': 'idx_mint_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'burn',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20, 8)', 'nullable': False},
                {'name': 'sender', 'type': 'TEXT', 'nullable': False},
                {'name': 'destination_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'memo', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'error_message', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_burn_reference', 'columns': ['reference_id'], 'unique': True},
                {'name': 'idx_burn_status', 'columns': ['status']},
                {'name': 'idx_burn_destination', 'columns': ['destination_address']}
            ]
        },
        {
            'name': 'withdrawal',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20, 8)', 'nullable': False},
                {'name': 'recipient', 'type': 'TEXT', 'nullable': False},
                {'name': 'burn_reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'burn_id', 'type': 'UUID'},
                {'name': 'confirmations', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'error_message', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['burn_id'], 'references': 'burn(id)'}
            ],
            'indexes': [
                {'name': 'idx_withdrawal_reference', 'columns': ['reference_id'], 'unique': True},
                {'name': 'idx_withdrawal_burn', 'columns': ['burn_reference_id'], 'unique': True},
                {'name': 'idx_withdrawal_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'bridge_state',
            'columns': [
                {'name': 'id', 'type': 'INT8', 'primary_key': True, 'default': '1', 'check': 'id = 1'},
                {'name': 'total_locked', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'total_minted', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'total_burned', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'total_withdrawn', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'total_fees_collected', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'last_source_block', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'last_destination_slot', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'paused', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'transaction_log',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'transaction_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'fee', 'type': 'DECIMAL(20, 8)', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False},
                {'name': 'details', 'type': 'JSONB'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_transaction_log_type', 'columns': ['transaction_type']},
                {'name': 'idx_transaction_log_reference', 'columns': ['reference_id']},
                {'name': 'idx_transaction_log_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'rejected_transfer',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'reference_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20, 8)'},
                {'name': 'payload', 'type': 'TEXT'},
                {'name': 'reason', 'type': 'TEXT', 'nullable': False},
                {'name': 'resolved', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_rejected_reference', 'columns': ['chain', 'reference_id'], 'unique': True},
                {'name': 'idx_rejected_unresolved', 'columns': ['resolved']}
            ]
        }
    ],
    'seed': [
        'INSERT INTO bridge_state (id) VALUES (1) ON CONFLICT (id) DO NOTHING'
    ]
}
